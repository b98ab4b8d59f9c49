"""Configuration module for CareMind Notification Service.

This module provides configuration settings using Pydantic Settings.
Environment variables can be used to override default values.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings for the notification service.

    All settings can be overridden via environment variables.
    Example: export FCM_PROJECT_ID="caremind-prod"
    """

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./caremind.db"
    """Database connection URL. Default: SQLite file in current directory"""

    # API Server Configuration
    API_HOST: str = "0.0.0.0"
    """API server host address"""

    API_PORT: int = 8005
    """API server port"""

    CORS_ORIGINS: List[str] = ["*"]
    """Origins allowed to call the entry points (cron dashboards, admin UI)"""

    # MCP Server Configuration
    MCP_HOST: str = "127.0.0.1"
    """MCP server host address"""

    MCP_PORT: int = 8006
    """MCP server port for SSE transport (separate from REST API)"""

    MCP_TRANSPORT: str = "sse"
    """MCP transport type: 'stdio' for local, 'sse' for network access"""

    # Civil time
    TIMEZONE: str = "America/Sao_Paulo"
    """Zone in which every time-of-day and calendar day is evaluated"""

    # Firebase Cloud Messaging
    FIREBASE_SERVICE_ACCOUNT: Optional[str] = None
    """Full service account JSON (preferred credential source)"""

    FCM_PROJECT_ID: Optional[str] = None
    FCM_CLIENT_EMAIL: Optional[str] = None
    FCM_PRIVATE_KEY: Optional[str] = None
    """Discrete credential fields, used when FIREBASE_SERVICE_ACCOUNT is absent"""

    FCM_TOKEN_URI: str = "https://oauth2.googleapis.com/token"
    FCM_SEND_URL: str = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"

    FCM_TIMEOUT: float = 30.0
    """Timeout in seconds for each gateway round trip"""

    # Scheduling
    QUEUE_BATCH_SIZE: int = 100
    """Maximum queue entries drained per invocation"""

    MEDICATION_LEAD_MINUTES: int = 5
    APPOINTMENT_LEAD_MINUTES: int = 30

    # Lateness monitoring
    MEDICATION_TOLERANCE_MINUTES: int = 15
    ROUTINE_TOLERANCE_MINUTES: int = 30

    # Background Worker Configuration
    WORKER_ENABLED: bool = True
    """Enable/disable the trigger worker"""

    WORKER_CHECK_INTERVAL: int = 60
    """Interval in seconds between schedule+drain ticks"""

    MONITOR_INTERVAL: int = 300
    """Interval in seconds between lateness monitor runs"""

    API_BASE_URL: str = "http://127.0.0.1:8005"
    """Base URL the worker uses to reach the entry points"""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None
    """Directory for rotating log files. Default: ./logs next to the code"""

    LOG_CONSOLE: bool = True
    """Mirror log records to stderr (turn off when a supervisor already captures the files)"""

    class Config:
        """Pydantic config"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
