"""Broker side of the counts consumer.

The consumer only depends on the small :class:`MessageSource` protocol so it
can be driven by Kafka in production and by an in-memory source in tests.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

from kafka import KafkaConsumer, TopicPartition

from app.core.logging import logger


@dataclass(frozen=True)
class InboundMessage:
    """One raw record as delivered by the broker."""

    topic: str
    partition: int
    offset: int
    key: bytes | None
    value: bytes | None


class MessageSource(Protocol):
    async def poll(self) -> InboundMessage | None:
        """Return the next record, or ``None`` when nothing arrived in time."""
        ...

    async def commit(self, message: InboundMessage) -> None:
        """Mark ``message`` (and everything before it in its partition) done."""
        ...

    async def rewind(self, message: InboundMessage) -> None:
        """Arrange for ``message`` to be delivered again by the next poll."""
        ...

    async def close(self) -> None:
        ...


class KafkaMessageSource:
    """Kafka group consumer yielding one record per poll.

    Auto-commit is disabled; offsets are committed only through
    :meth:`commit`. ``kafka-python`` is blocking, so every call runs in a
    worker thread. Calls are never issued concurrently.

    Args:
        bootstrap_servers: Kafka bootstrap address(es), e.g. ``"localhost:9092"``.
        topic: Topic carrying the simulation counts.
        group_id: Consumer group id.
        poll_timeout_ms: How long a single poll waits for a record.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        group_id: str,
        *,
        poll_timeout_ms: int = 1000,
    ) -> None:
        self.topic = topic
        self.poll_timeout_ms = poll_timeout_ms
        self._consumer = KafkaConsumer(
            topic,
            bootstrap_servers=bootstrap_servers,
            group_id=group_id,
            auto_offset_reset="earliest",
            enable_auto_commit=False,
            max_poll_records=1,
        )
        logger.info(
            "Kafka consumer subscribed (servers=%s, topic=%s, group=%s).",
            bootstrap_servers,
            topic,
            group_id,
        )

    def _poll_once(self) -> InboundMessage | None:
        batches = self._consumer.poll(timeout_ms=self.poll_timeout_ms, max_records=1)
        for records in batches.values():
            for record in records:
                return InboundMessage(
                    topic=record.topic,
                    partition=record.partition,
                    offset=record.offset,
                    key=record.key,
                    value=record.value,
                )
        return None

    async def poll(self) -> InboundMessage | None:
        return await asyncio.to_thread(self._poll_once)

    async def commit(self, message: InboundMessage) -> None:
        # One record per poll, so the consumed position is message.offset + 1.
        await asyncio.to_thread(self._consumer.commit)

    async def rewind(self, message: InboundMessage) -> None:
        partition = TopicPartition(message.topic, message.partition)
        await asyncio.to_thread(self._consumer.seek, partition, message.offset)

    async def close(self) -> None:
        await asyncio.to_thread(self._consumer.close, False)
        logger.info("Kafka consumer closed (topic=%s).", self.topic)
