#!/usr/bin/env python3
"""Unified entry point for CareMind Notification Service.

Starts the API server, the MCP server and the trigger worker as
subprocesses and stops all of them when any one exits.
"""

import subprocess
import signal
import sys
import time
import logging
import os
from typing import List, Tuple

from config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SERVICES: List[Tuple[str, str]] = [
    ("API server", "api_server.py"),
    ("MCP server", "mcp_server.py"),
    ("Trigger worker", "background_worker.py"),
]

# Global list to track all running processes
processes: List[subprocess.Popen] = []
shutdown_requested = False


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    global shutdown_requested
    if shutdown_requested:
        logger.warning("Force shutdown requested")
        sys.exit(1)

    shutdown_requested = True
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_services()


def shutdown_services():
    """Stop all running services."""
    logger.info("Stopping all services...")
    for process in processes:
        if process.poll() is None:
            logger.info(f"Terminating process (PID: {process.pid})")
            process.terminate()

    for process in processes:
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning(f"Force killing process (PID: {process.pid})")
            process.kill()
            process.wait()

    logger.info("All services stopped")
    sys.exit(0)


def start_service(script: str, cwd: str) -> subprocess.Popen:
    """Launch one service script with the launcher's environment.

    Children inherit the launcher's stdout/stderr; nothing is piped.
    """
    env = os.environ.copy()
    if script == "mcp_server.py":
        env['MCP_TRANSPORT'] = 'sse'
    return subprocess.Popen([sys.executable, script], cwd=cwd, env=env)


def main():
    """Start every service and watch them."""
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info("=" * 60)
    logger.info("CareMind Notification Service - Unified Startup")
    logger.info("=" * 60)

    current_dir = os.path.dirname(os.path.abspath(__file__))

    try:
        for name, script in SERVICES:
            logger.info(f"Starting {name}...")
            processes.append(start_service(script, current_dir))
            time.sleep(2)

        logger.info("=" * 60)
        logger.info("All services started successfully!")
        logger.info(f"  - API Server: http://{settings.API_HOST}:{settings.API_PORT}")
        logger.info(f"  - API Docs: http://{settings.API_HOST}:{settings.API_PORT}/docs")
        logger.info(f"  - MCP Server: http://{settings.MCP_HOST}:{settings.MCP_PORT}/sse")
        logger.info(f"  - Trigger Worker: every {settings.WORKER_CHECK_INTERVAL}s")
        logger.info("=" * 60)

        while not shutdown_requested:
            for (name, _), process in zip(SERVICES, processes):
                if process.poll() is not None:
                    logger.error(f"{name} (PID: {process.pid}) has stopped unexpectedly!")
                    shutdown_services()
            time.sleep(5)

    except Exception as e:
        logger.error(f"Error starting services: {e}")
        shutdown_services()


if __name__ == "__main__":
    main()
