"""Fan-out of one notification to many device tokens.

Every token gets its own concurrent send; a failing token never blocks or
aborts the others. Results come back per token, in input order.
"""

import asyncio
from typing import Any, Dict, List, Optional

from logger_config import setup_logger
from schemas import DeliveryResult, FanoutResult, TokenOutcome

logger = setup_logger(__name__, 'dispatch.log')


async def send_to_many(
    client,
    tokens: List[str],
    title: str,
    body: str,
    data: Optional[Dict[str, Any]] = None
) -> FanoutResult:
    """Send the same notification to every token concurrently.

    Args:
        client: Delivery client exposing async send(token, title, body, data)
        tokens: FCM registration tokens
        title: Notification title
        body: Notification body
        data: Optional custom data payload

    Returns:
        FanoutResult: one outcome per token; exceptions count as failures
    """
    results = await asyncio.gather(
        *(client.send(token, title, body, data) for token in tokens),
        return_exceptions=True
    )

    outcomes = []
    for index, (token, result) in enumerate(zip(tokens, results)):
        if isinstance(result, BaseException):
            outcomes.append(TokenOutcome(
                index=index, token=token, success=False,
                error=str(result) or result.__class__.__name__
            ))
        elif isinstance(result, DeliveryResult):
            outcomes.append(TokenOutcome(
                index=index,
                token=token,
                success=result.success,
                message_id=result.message_id,
                error=None if result.success else (result.error or "Unknown error"),
                token_rejected=result.token_rejected,
            ))
        else:
            outcomes.append(TokenOutcome(
                index=index, token=token, success=False,
                error=f"Unexpected delivery result: {result!r}"
            ))

    fanout = FanoutResult(outcomes=outcomes)
    logger.info(f"Fan-out '{title}': {fanout.sent} sent, {fanout.failed} failed of {len(tokens)}")
    return fanout
