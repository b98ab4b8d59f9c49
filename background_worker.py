"""Background trigger worker for CareMind Notification Service.

Plays the role of the external cron: it never touches the database itself,
it only calls the HTTP entry points on a fixed cadence.

The worker:
- Calls the schedule+drain tick every WORKER_CHECK_INTERVAL seconds
- Calls both lateness monitors every MONITOR_INTERVAL seconds
- Logs failed calls and waits for the next cycle (no retries)
"""

import asyncio
import signal
import sys
import time
from typing import Optional

import httpx

from config import settings
from logger_config import setup_logger

# Configure logging
logger = setup_logger(__name__, 'worker.log')

TICK_PATH = "/scheduled-notifications"
MONITOR_PATHS = ("/monitor/medications", "/monitor/routines")

# Global flag for graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    global shutdown_requested
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_requested = True


async def trigger(client: httpx.AsyncClient, path: str) -> Optional[dict]:
    """POST one entry point.

    Args:
        client: HTTP client bound to API_BASE_URL
        path: Entry point path

    Returns:
        dict: JSON response if successful, None if failed
    """
    try:
        response = await client.post(path, json={})
        if response.status_code == 200:
            data = response.json()
            logger.info(f"{path} -> {data}")
            return data
        logger.error(f"{path} failed. Status: {response.status_code}, Response: {response.text}")
        return None
    except httpx.TimeoutException:
        logger.error(f"Timeout while calling {path}")
        return None
    except httpx.RequestError as e:
        logger.error(f"Network error while calling {path}: {str(e)}")
        return None


async def run_cycle(client: httpx.AsyncClient, run_monitors: bool) -> None:
    """One worker iteration: always the tick, monitors when due."""
    await trigger(client, TICK_PATH)
    if run_monitors:
        for path in MONITOR_PATHS:
            await trigger(client, path)


async def worker_loop(transport: Optional[httpx.AsyncBaseTransport] = None, max_iterations: Optional[int] = None):
    """Main worker loop that runs until a shutdown signal.

    Args:
        transport: Optional httpx transport (tests inject a mock)
        max_iterations: Stop after this many iterations (None = run forever)
    """
    logger.info("Background worker started")
    logger.info(f"Worker enabled: {settings.WORKER_ENABLED}")
    logger.info(f"Tick interval: {settings.WORKER_CHECK_INTERVAL}s, monitor interval: {settings.MONITOR_INTERVAL}s")
    logger.info(f"API base URL: {settings.API_BASE_URL}")

    if not settings.WORKER_ENABLED:
        logger.warning("Worker is disabled in configuration. Exiting.")
        return

    last_monitor_run = None
    iteration = 0
    async with httpx.AsyncClient(base_url=settings.API_BASE_URL, timeout=120.0, transport=transport) as client:
        while not shutdown_requested:
            iteration += 1
            try:
                now = time.monotonic()
                run_monitors = last_monitor_run is None or now - last_monitor_run >= settings.MONITOR_INTERVAL
                await run_cycle(client, run_monitors)
                if run_monitors:
                    last_monitor_run = now
            except Exception as e:
                logger.error(f"Error in worker loop iteration {iteration}: {str(e)}", exc_info=True)

            if max_iterations is not None and iteration >= max_iterations:
                break

            # Sleep in 1-second steps so shutdown stays responsive
            for _ in range(settings.WORKER_CHECK_INTERVAL):
                if shutdown_requested:
                    break
                await asyncio.sleep(1)

    logger.info("Background worker shutting down gracefully")


def main():
    """Main entry point for the background worker."""
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info("=" * 60)
    logger.info("CareMind Notification Service - Trigger Worker")
    logger.info("=" * 60)

    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.error(f"Fatal error in background worker: {str(e)}", exc_info=True)
        sys.exit(1)

    logger.info("Background worker stopped")
    sys.exit(0)


if __name__ == "__main__":
    main()
