"""
Standalone polling process.

Runs the scheduler without the HTTP API. Completion events only go to the log
since no observers can connect to this process.
"""
import asyncio
import logging
import signal

from dotenv import load_dotenv

from triage.core.config import get_settings
from triage.core.log_config import setup_logging
from triage.deps import build_worker
from triage.infra.notifier import LoggingNotifier

logger = logging.getLogger(__name__)


async def run() -> None:
    worker = build_worker(notifier=LoggingNotifier())
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    worker.start()
    await stop.wait()
    logger.info("Signal received")
    await worker.stop()


def main() -> None:
    load_dotenv()
    setup_logging(get_settings().log_level)
    logger.info("Starting ticket triage worker...")
    asyncio.run(run())


if __name__ == "__main__":
    main()
