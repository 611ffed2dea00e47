from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path
from typing import NoReturn

# Ensure the backend root (parent of this file's directory) is on sys.path
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from app.core.logging import configure_logging, logger  # noqa: E402
from app.services.counts_consumer import SimulationCountsConsumer  # noqa: E402
from app.services.message_source import KafkaMessageSource  # noqa: E402
from core.settings import get_settings  # noqa: E402
from db.session import AsyncSessionLocal, engine  # noqa: E402


async def _run_consumer() -> None:
    settings = get_settings()
    source = await asyncio.to_thread(
        KafkaMessageSource,
        settings.kafka_url,
        settings.counts_topic,
        settings.kafka_group,
        poll_timeout_ms=settings.kafka_poll_timeout_ms,
    )
    consumer = SimulationCountsConsumer(
        source,
        AsyncSessionLocal,
        redelivery_delay_seconds=settings.redelivery_delay_seconds,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, consumer.stop)

    try:
        await consumer.run()
    finally:
        await engine.dispose()


def main() -> NoReturn:
    """Consume the counts topic until interrupted."""
    configure_logging(get_settings().log_level)
    logger.info("Starting standalone simulation counts consumer.")
    asyncio.run(_run_consumer())
    raise SystemExit(0)


if __name__ == "__main__":
    main()
