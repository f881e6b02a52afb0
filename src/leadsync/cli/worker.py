"""Headless worker - runs the change feed listener until SIGINT/SIGTERM."""

from __future__ import annotations

import signal
import time

from loguru import logger

from leadsync.application.listener import ChangeFeedListener, ListenerSubscription
from leadsync.infrastructure.logging import setup_logging
from leadsync.infrastructure.settings import get_settings
from leadsync.infrastructure.wiring import get_pipeline


class ListenerWorker:
    """
    Run the listener in the foreground.

    The listener is not restarted after a feed error; the worker exits
    non-zero instead so the process supervisor can restart it.
    """

    def __init__(self, listener: ChangeFeedListener, stats_interval_seconds: float = 300.0):
        self.listener = listener
        self.stats_interval = stats_interval_seconds
        self.running = False
        self._subscription: ListenerSubscription | None = None

    def _log_stats(self) -> None:
        """Log current listener statistics."""
        stats = self.listener.stats
        logger.info(
            f"Worker stats: "
            f"deliveries={stats.deliveries}, "
            f"processed={stats.processed}, "
            f"skipped={stats.skipped}, "
            f"failed={stats.failed}, "
            f"by_state={stats.by_state}"
        )

    def _handle_shutdown(self, signum, frame) -> None:
        """Handle graceful shutdown."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.running = False

    def run(self) -> int:
        """Run the worker loop."""
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

        self._subscription = self.listener.start()
        self.running = True

        since_stats = 0.0
        while self.running:
            time.sleep(1)
            since_stats += 1
            if since_stats >= self.stats_interval:
                self._log_stats()
                since_stats = 0.0
            if not self._subscription.active:
                logger.error(f"Listener stopped unexpectedly: {self.listener.last_error}")
                self._log_stats()
                return 1

        self._subscription.stop()
        logger.info("Worker shutdown complete")
        self._log_stats()
        return 0


def main() -> int:
    """Entry point for the listener worker."""
    setup_logging()
    settings = get_settings()

    logger.info("=" * 60)
    logger.info(f"{settings.app_name} Worker")
    logger.info("=" * 60)

    try:
        pipeline = get_pipeline()
    except Exception as e:
        logger.error(f"Failed to initialize pipeline: {e}")
        return 1

    return ListenerWorker(pipeline.listener).run()


if __name__ == "__main__":
    raise SystemExit(main())
