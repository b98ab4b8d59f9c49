"""FastAPI REST API server for CareMind Notification Service.

Each endpoint is one short, stateless invocation meant to be called by a
scheduler (cron, the background worker) or by the app backend. Handled
failures answer 200 with success=false; malformed input answers 400;
configuration and record-store failures answer 500.
"""

from functools import lru_cache
from typing import List

from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

import crud
import schemas
import database
from civil_time import utc_now
from config import settings
from dispatcher import send_to_many
from fcm_client import ConfigurationError, FCMClient
from logger_config import setup_logger
from monitor import check_missed_medications, check_missed_routines
from queue_processor import process_queue
from scheduler import evaluate_schedule

logger = setup_logger(__name__, 'api.log')

# Create FastAPI application
app = FastAPI(
    title="CareMind Notification Service API",
    description="Push delivery, reminder scheduling and missed-dose monitoring",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Cross-origin callers (dashboards, cron runners) send a preflight first
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


@lru_cache(maxsize=1)
def get_fcm_client() -> FCMClient:
    """Process-wide delivery client; its credential cache survives across requests."""
    return FCMClient()


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request body", "detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> List[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


def _require_fcm(client: FCMClient) -> None:
    try:
        client.ensure_configured()
    except ConfigurationError as e:
        logger.error(f"FCM not configured: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@app.options("/{path:path}", include_in_schema=False)
def preflight(path: str):
    """Answer bare OPTIONS requests; CORS preflights are handled by the middleware."""
    return PlainTextResponse("ok")


@app.get("/")
def root():
    """Root endpoint - service information"""
    return {
        "service": "CareMind Notification Service API",
        "version": "1.0.0",
        "status": "healthy",
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "push": "/push",
            "tick": "/scheduled-notifications"
        }
    }


@app.get("/health")
def health_check():
    """Health check endpoint for monitoring"""
    return {
        "status": "healthy",
        "service": "caremind_notifications",
        "database": settings.DATABASE_URL.split("://")[0],
        "timezone": settings.TIMEZONE
    }


@app.post("/push", response_model=schemas.PushResponse, response_model_exclude_none=True)
async def push(
    request: schemas.PushRequest,
    db: Session = Depends(database.get_db),
    client: FCMClient = Depends(get_fcm_client)
):
    """Send a notification to explicit tokens or to every device of one or more profiles.

    Request body example:
    ```json
    {
        "profile_id": "5b0c...",
        "title": "Medication time",
        "body": "Metformina at 08:00",
        "type": "medication",
        "data": {"reference_id": "42"}
    }
    ```

    Tokens the gateway rejects are deactivated afterwards.
    """
    try:
        if request.token:
            tokens = [request.token]
        elif request.tokens:
            tokens = list(request.tokens)
        elif request.profile_id:
            tokens = crud.get_active_tokens(db, request.profile_id)
        elif request.profile_ids:
            tokens = crud.get_active_tokens_for_profiles(db, request.profile_ids)
        else:
            tokens = []
    except Exception as e:
        logger.error(f"Token lookup failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error loading device tokens: {str(e)}")

    if not tokens:
        return schemas.PushResponse(success=False, error="No FCM tokens found", sent=0, failed=0)

    _require_fcm(client)
    fanout = await send_to_many(client, tokens, request.title, request.body, request.data)

    try:
        history_profile = request.profile_id or (request.profile_ids[0] if request.profile_ids else None)
        if history_profile and not (request.token or request.tokens):
            crud.record_notification_history(
                db,
                profile_id=history_profile,
                title=request.title,
                body=request.body,
                type=request.type,
                success=fanout.sent > 0,
                tokens_sent=len(tokens),
                tokens_succeeded=fanout.sent,
            )
        if fanout.rejected_tokens:
            crud.deactivate_tokens(db, fanout.rejected_tokens)
    except Exception as e:
        logger.error(f"Post-send bookkeeping failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error recording push outcome: {str(e)}")

    return schemas.PushResponse(
        success=fanout.sent > 0,
        sent=fanout.sent,
        failed=fanout.failed,
        total=len(tokens),
        errors=fanout.errors or None,
    )


@app.post("/send-notification", response_model=schemas.PushResponse, response_model_exclude_none=True)
async def send_notification(
    request: schemas.SendNotificationRequest,
    db: Session = Depends(database.get_db),
    client: FCMClient = Depends(get_fcm_client)
):
    """Send a notification to every active device of one profile."""
    try:
        tokens = crud.get_active_tokens(db, request.profile_id)
    except Exception as e:
        logger.error(f"Token lookup failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error loading device tokens: {str(e)}")

    if not tokens:
        return schemas.PushResponse(success=False, error="No FCM tokens found")

    _require_fcm(client)
    fanout = await send_to_many(client, tokens, request.title, request.body, request.data)

    try:
        crud.record_notification_history(
            db,
            profile_id=request.profile_id,
            title=request.title,
            body=request.body,
            type="push",
            success=fanout.sent > 0,
            tokens_sent=len(tokens),
            tokens_succeeded=fanout.sent,
        )
    except Exception as e:
        logger.error(f"Failed to record notification history: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error recording push outcome: {str(e)}")

    return schemas.PushResponse(success=fanout.sent > 0, sent=fanout.sent, failed=fanout.failed)


@app.post("/schedule", response_model=schemas.ScheduleResult)
def schedule(db: Session = Depends(database.get_db)):
    """Enqueue tomorrow's medication and appointment reminders."""
    try:
        return evaluate_schedule(db)
    except Exception as e:
        logger.error(f"Schedule evaluation failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error evaluating schedule: {str(e)}")


async def _drain(db: Session, client: FCMClient) -> schemas.DrainResult:
    try:
        return await process_queue(db, client)
    except ConfigurationError as e:
        logger.error(f"FCM not configured: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"Queue processing failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error processing queue: {str(e)}")


@app.post("/process-queue", response_model=schemas.DrainResult)
async def drain_queue(
    db: Session = Depends(database.get_db),
    client: FCMClient = Depends(get_fcm_client)
):
    """Dispatch due queue entries (at most QUEUE_BATCH_SIZE per call)."""
    return await _drain(db, client)


@app.post("/monitor/medications", response_model=schemas.MonitorResult)
def monitor_medications(db: Session = Depends(database.get_db)):
    """Record an alert for every medication dose missed past its tolerance today."""
    try:
        return check_missed_medications(db)
    except Exception as e:
        logger.error(f"Medication monitoring failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error monitoring medications: {str(e)}")


@app.post("/monitor/routines", response_model=schemas.MonitorResult)
def monitor_routines(db: Session = Depends(database.get_db)):
    """Record an alert for every routine not completed past its tolerance today."""
    try:
        return check_missed_routines(db)
    except Exception as e:
        logger.error(f"Routine monitoring failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error monitoring routines: {str(e)}")


@app.post("/scheduled-notifications", response_model=schemas.TickResult)
async def tick(
    db: Session = Depends(database.get_db),
    client: FCMClient = Depends(get_fcm_client)
):
    """Evaluate the schedule, then drain the queue, in one call."""
    try:
        scheduled = evaluate_schedule(db)
    except Exception as e:
        logger.error(f"Schedule evaluation failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error evaluating schedule: {str(e)}")

    processed = await _drain(db, client)
    return schemas.TickResult(scheduled=scheduled, processed=processed, timestamp=utc_now())


@app.get("/queue", response_model=List[schemas.QueueEntryResponse])
def list_queue(
    profile_id: str = Query(..., description="Recipient profile ID"),
    pending_only: bool = Query(False, description="Only entries not yet processed"),
    limit: int = Query(50, ge=1, le=1000, description="Maximum number of results"),
    db: Session = Depends(database.get_db)
):
    """List a profile's queue entries, newest scheduled first."""
    return crud.list_queue_entries(db, profile_id, pending_only, limit)


@app.get("/alerts", response_model=List[schemas.AlertEventResponse])
def list_alerts(
    profile_id: str = Query(..., description="Recipient profile ID"),
    limit: int = Query(50, ge=1, le=1000, description="Maximum number of results"),
    db: Session = Depends(database.get_db)
):
    """List a profile's alert events, most recent first."""
    return crud.list_alert_events(db, profile_id, limit)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info"
    )
