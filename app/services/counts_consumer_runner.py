from __future__ import annotations

import asyncio

from app.core.logging import logger
from app.services.counts_consumer import SimulationCountsConsumer
from app.services.message_source import KafkaMessageSource, MessageSource
from core.settings import get_settings
from db.session import AsyncSessionLocal

_settings = get_settings()
_consumer: SimulationCountsConsumer | None = None
_task: asyncio.Task[None] | None = None


def _build_kafka_source() -> MessageSource:
    return KafkaMessageSource(
        _settings.kafka_url,
        _settings.counts_topic,
        _settings.kafka_group,
        poll_timeout_ms=_settings.kafka_poll_timeout_ms,
    )


def _on_task_done(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Simulation counts consumer exited unexpectedly.",
            exc_info=(type(exc), exc, exc.__traceback__),
        )


async def start_counts_consumer(source: MessageSource | None = None) -> None:
    """Start the counts consumer as a background task if enabled.

    Args:
        source: Optional broker adapter; a Kafka source built from settings
            is used when omitted.

    Returns:
        None.
    """

    global _consumer, _task
    if _task is not None:
        return

    if not _settings.counts_consumer_enabled:
        logger.info("Simulation counts consumer disabled by settings.")
        return

    if source is None:
        # Constructing the Kafka client blocks on bootstrap.
        source = await asyncio.to_thread(_build_kafka_source)

    _consumer = SimulationCountsConsumer(
        source,
        AsyncSessionLocal,
        redelivery_delay_seconds=_settings.redelivery_delay_seconds,
    )
    _task = asyncio.create_task(_consumer.run(), name="simulation-counts-consumer")
    _task.add_done_callback(_on_task_done)
    logger.info(
        "Simulation counts consumer scheduled (topic=%s, group=%s).",
        _settings.counts_topic,
        _settings.kafka_group,
    )


async def shutdown_counts_consumer() -> None:
    """Stop the counts consumer and wait for the record in flight.

    Returns:
        None.
    """

    global _consumer, _task
    if _consumer is None or _task is None:
        return

    _consumer.stop()
    await asyncio.gather(_task, return_exceptions=True)
    _consumer = None
    _task = None
