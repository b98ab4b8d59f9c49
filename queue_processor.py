"""Drain due entries of the notification queue.

Each due entry gets exactly one delivery attempt and is then marked processed,
whatever the outcome. There is no retry: a failed entry stays failed.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

import crud
from civil_time import as_utc, utc_now
from config import settings
from dispatcher import send_to_many
from logger_config import setup_logger
from schemas import DrainResult

logger = setup_logger(__name__, 'queue.log')

NO_TOKENS_ERROR = "no active tokens"


async def process_queue(
    db: Session,
    client,
    now: Optional[datetime] = None,
    limit: Optional[int] = None
) -> DrainResult:
    """Dispatch up to `limit` due, unprocessed queue entries.

    Args:
        db: Database session
        client: Delivery client (see fcm_client.FCMClient)
        now: Cut-off instant (defaults to the current time)
        limit: Batch cap (defaults to QUEUE_BATCH_SIZE)

    Returns:
        DrainResult: processed/successful/failed counts

    Raises:
        ConfigurationError: Before touching any entry, if FCM is not configured
    """
    now = as_utc(now) if now else utc_now()
    limit = limit or settings.QUEUE_BATCH_SIZE

    entries = crud.get_due_queue_entries(db, now, limit)
    result = DrainResult()
    if not entries:
        logger.debug("No due queue entries")
        return result

    client.ensure_configured()
    logger.info(f"Processing {len(entries)} due queue entr{'y' if len(entries) == 1 else 'ies'}")

    for entry in entries:
        succeeded = False
        error = None
        try:
            tokens = crud.get_active_tokens(db, entry.profile_id)
            if tokens:
                fanout = await send_to_many(
                    client, tokens, entry.title, entry.body,
                    {"type": entry.type, "reference_id": entry.reference_id or ""}
                )
                succeeded = fanout.sent > 0
                if not succeeded:
                    error = "; ".join(fanout.errors)
                if fanout.rejected_tokens:
                    crud.deactivate_tokens(db, fanout.rejected_tokens)
            else:
                error = NO_TOKENS_ERROR
        except Exception as e:
            logger.error(f"Error processing queue entry {entry.id}: {str(e)}", exc_info=True)
            db.rollback()
            succeeded = False
            error = str(e) or e.__class__.__name__

        crud.mark_entry_processed(db, entry, succeeded, error)
        result.processed += 1
        if succeeded:
            result.successful += 1
        else:
            result.failed += 1
            logger.warning(f"Queue entry {entry.id} failed: {error}")

    logger.info(f"Queue drained: {result.processed} processed, {result.successful} ok, {result.failed} failed")
    return result
