"""MCP Server for CareMind Notification Service.

This module exposes the notification entry points as MCP tools so an AI
agent (care assistant, support console) can trigger them and inspect the
queue and alert history. Uses the same database as the REST API.

Transport Support:
- stdio: Standard input/output (local process communication)
- sse: Server-Sent Events over HTTP (network access, scalable)
"""

from mcp.server.fastmcp import FastMCP
import os

import crud
import database
from civil_time import as_utc, civil_zone
from config import settings
from dispatcher import send_to_many
from fcm_client import ConfigurationError, FCMClient
from logger_config import setup_logger
from monitor import check_missed_medications as run_medication_monitor
from monitor import check_missed_routines as run_routine_monitor
from queue_processor import process_queue
from scheduler import evaluate_schedule

logger = setup_logger(__name__, 'mcp.log')
logger.info("MCP Server initialized")

# Create FastMCP server with host and port from settings
mcp = FastMCP(
    "CareMindNotifications",
    host=settings.MCP_HOST,
    port=settings.MCP_PORT
)

_client = None


def get_client():
    """Process-wide delivery client shared by every tool call."""
    global _client
    if _client is None:
        _client = FCMClient()
    return _client


def _local(dt) -> str:
    return as_utc(dt).astimezone(civil_zone()).strftime("%Y-%m-%d %H:%M")


@mcp.tool()
async def send_push(profile_id: str, title: str, body: str) -> str:
    """Send a push notification to every active device of a profile.

    Args:
        profile_id: Recipient profile ID
        title: Notification title
        body: Notification body

    Returns:
        Delivery summary or error message
    """
    db = database.SessionLocal()
    try:
        tokens = crud.get_active_tokens(db, profile_id)
        if not tokens:
            return "✗ No active devices for this profile."

        client = get_client()
        client.ensure_configured()
        fanout = await send_to_many(client, tokens, title, body)
        crud.record_notification_history(
            db, profile_id=profile_id, title=title, body=body, type="push",
            success=fanout.sent > 0, tokens_sent=len(tokens), tokens_succeeded=fanout.sent
        )
        if fanout.rejected_tokens:
            crud.deactivate_tokens(db, fanout.rejected_tokens)

        lines = [f"{'✓' if fanout.sent else '✗'} Sent {fanout.sent}/{len(tokens)}, failed {fanout.failed}"]
        lines.extend(f"  - {e}" for e in fanout.errors)
        return "\n".join(lines)
    except ConfigurationError as e:
        return f"✗ FCM not configured: {str(e)}"
    except Exception as e:
        return f"✗ Error sending push: {str(e)}"
    finally:
        db.close()


@mcp.tool()
def schedule_notifications() -> str:
    """Enqueue tomorrow's medication and appointment reminders.

    Returns:
        Counts of profiles scanned and reminders newly queued
    """
    db = database.SessionLocal()
    try:
        result = evaluate_schedule(db)
        return (
            f"✓ Schedule evaluated\n"
            f"Profiles: {result.profiles_processed}\n"
            f"Medication reminders queued: {result.medications_scheduled}\n"
            f"Appointment reminders queued: {result.appointments_scheduled}"
        )
    except Exception as e:
        return f"✗ Error evaluating schedule: {str(e)}"
    finally:
        db.close()


@mcp.tool()
async def process_notification_queue() -> str:
    """Dispatch every due queue entry (one attempt each, no retries).

    Returns:
        Processed/successful/failed counts
    """
    db = database.SessionLocal()
    try:
        result = await process_queue(db, get_client())
        return f"✓ Processed {result.processed}: {result.successful} delivered, {result.failed} failed"
    except ConfigurationError as e:
        return f"✗ FCM not configured: {str(e)}"
    except Exception as e:
        return f"✗ Error processing queue: {str(e)}"
    finally:
        db.close()


def _format_monitor(result, label: str) -> str:
    if not result.alerts_generated:
        return f"No missed {label}s right now. ✓"
    lines = [f"⏰ {result.alerts_generated} missed {label}(s):"]
    for d in result.details:
        lines.append(f"\n• {d.name} at {d.time}\n  ID: {d.reference_id}\n  Profile: {d.profile_id}")
    return "\n".join(lines)


@mcp.tool()
def check_missed_medications() -> str:
    """Record alerts for medication doses missed past their 15 minute tolerance today.

    Returns:
        Newly recorded alerts
    """
    db = database.SessionLocal()
    try:
        return _format_monitor(run_medication_monitor(db), "medication")
    except Exception as e:
        return f"✗ Error monitoring medications: {str(e)}"
    finally:
        db.close()


@mcp.tool()
def check_missed_routines() -> str:
    """Record alerts for routines not completed past their 30 minute tolerance today.

    Returns:
        Newly recorded alerts
    """
    db = database.SessionLocal()
    try:
        return _format_monitor(run_routine_monitor(db), "routine")
    except Exception as e:
        return f"✗ Error monitoring routines: {str(e)}"
    finally:
        db.close()


@mcp.tool()
def list_queue_entries(profile_id: str, pending_only: bool = False, limit: int = 50) -> str:
    """List queued reminders of a profile.

    Args:
        profile_id: Recipient profile ID
        pending_only: Only entries not yet dispatched
        limit: Maximum number of results (default: 50, max: 1000)

    Returns:
        Formatted list of queue entries (times in civil time)
    """
    db = database.SessionLocal()
    try:
        entries = crud.list_queue_entries(db, profile_id, pending_only, min(limit, 1000))
        if not entries:
            return "No queued reminders found."

        result = [f"Found {len(entries)} queued reminder(s):\n"]
        for e in entries:
            if not e.processed:
                state = "PENDING"
            else:
                state = "SENT" if e.succeeded else "FAILED"
            result.append(
                f"\n• [{state}] {e.title}: {e.body}\n"
                f"  ID: {e.id}\n"
                f"  At: {_local(e.scheduled_at)}"
            )
            if e.error:
                result.append(f"  Error: {e.error}")
        return "\n".join(result)
    finally:
        db.close()


@mcp.tool()
def list_alert_events(profile_id: str, limit: int = 50) -> str:
    """List missed-dose and incomplete-routine alerts of a profile.

    Args:
        profile_id: Recipient profile ID
        limit: Maximum number of results (default: 50, max: 1000)

    Returns:
        Formatted list of alert events
    """
    db = database.SessionLocal()
    try:
        alerts = crud.list_alert_events(db, profile_id, min(limit, 1000))
        if not alerts:
            return "No alerts recorded."

        result = [f"Found {len(alerts)} alert(s):\n"]
        for a in alerts:
            result.append(f"\n• [{a.event_type}] {a.description}\n  At: {_local(a.occurred_at)}")
        return "\n".join(result)
    finally:
        db.close()


if __name__ == "__main__":
    transport = os.getenv("MCP_TRANSPORT", settings.MCP_TRANSPORT).lower()

    if transport == "sse":
        host = settings.MCP_HOST
        port = settings.MCP_PORT

        print(f"Starting MCP server with SSE transport on {host}:{port}")
        print(f"SSE endpoint: http://{host}:{port}/sse")

        mcp.run(transport="sse")
    else:
        print("Starting MCP server with stdio transport")
        mcp.run(transport="stdio")
