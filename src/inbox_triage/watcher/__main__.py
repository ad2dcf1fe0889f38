"""CLI entry point for the watcher daemon.

Allows running the watcher as a module:
    python -m inbox_triage.watcher
"""

import signal
import sys
from types import FrameType

from inbox_triage.config import load_config
from inbox_triage.logging import get_logger
from inbox_triage.watcher.daemon import request_shutdown, run_watcher

logger = get_logger("watcher")


def signal_handler(signum: int, frame: FrameType | None) -> None:
    """Handle shutdown signals gracefully."""
    sig_name = signal.Signals(signum).name
    logger.info("Received signal %s, shutting down", sig_name)
    request_shutdown()


def main() -> None:
    """Main entry point for the watcher daemon."""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    config = load_config()

    try:
        run_watcher(config)
    except KeyboardInterrupt:
        # Handle case where signal handler didn't catch it
        logger.info("Interrupted, shutting down")
        request_shutdown()

    sys.exit(0)


if __name__ == "__main__":
    main()
