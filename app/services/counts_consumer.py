"""Ingestion of simulation progress messages from the counts topic.

Each record is parsed into a typed message and dispatched to the count and
simulation services. Its offset is committed only after the handler
finished, so processing is at-least-once per record:

* malformed records are logged and committed (they can never succeed);
* any other failure leaves the record uncommitted and rewinds the source so
  the record is delivered again after a short pause.
"""

from __future__ import annotations

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.logging import logger
from app.models.simulation import SimulationStatus
from app.schemas.messages import (
    CountMessage,
    InterventionMessage,
    SimulationMessage,
    TerminationMessage,
    parse_message,
)
from app.services.count_service import add_intervention, upsert_count
from app.services.ingestion_errors import MalformedMessageError
from app.services.message_source import InboundMessage, MessageSource
from app.services.simulation_service import update_simulation_status

PROGRESS_LOG_EVERY_HOURS = 100


class SimulationCountsConsumer:
    """Consume the counts topic and persist what it carries.

    Args:
        source: Broker adapter delivering raw records.
        session_factory: Factory for the async sessions used per record.
        redelivery_delay_seconds: Pause after a failed record before the
            next poll, so an unavailable store is not hammered.
    """

    def __init__(
        self,
        source: MessageSource,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        redelivery_delay_seconds: float = 1.0,
    ) -> None:
        self.source = source
        self.session_factory = session_factory
        self.redelivery_delay_seconds = redelivery_delay_seconds
        self._stopping = asyncio.Event()

    async def handle_message(self, message: SimulationMessage) -> None:
        """Persist one parsed message; exceptions propagate to the caller."""

        async with self.session_factory() as db:
            if isinstance(message, TerminationMessage):
                await update_simulation_status(
                    db, message.simulation_id, SimulationStatus.FINISHED
                )
                logger.info("Consumed all messages for simulation %s.", message.simulation_id)
            elif isinstance(message, InterventionMessage):
                logger.info(
                    "Handling intervention %s (simulation=%s, hour=%s).",
                    message.intervention,
                    message.simulation_id,
                    message.hour,
                )
                await add_intervention(
                    db,
                    message.simulation_id,
                    message.hour,
                    message.intervention,
                    message.data,
                )
            else:
                await self._handle_counts(db, message)

    async def _handle_counts(self, db: AsyncSession, message: CountMessage) -> None:
        if message.hour == 1:
            await update_simulation_status(
                db, message.simulation_id, SimulationStatus.RUNNING
            )

        if message.hour % PROGRESS_LOG_EVERY_HOURS == 0:
            logger.info("Simulation %s reached hour %s.", message.simulation_id, message.hour)

        await upsert_count(db, message.simulation_id, message.hour, message.counts)

    async def handle_record(self, record: InboundMessage) -> None:
        """Parse and persist one raw record (no offset handling)."""

        message = parse_message(record.key, record.value)
        await self.handle_message(message)

    async def process_next(self) -> bool:
        """Poll, handle and commit at most one record.

        Returns:
            ``True`` when a record was received, ``False`` on an empty poll.
        """

        record = await self.source.poll()
        if record is None:
            return False

        try:
            await self.handle_record(record)
        except MalformedMessageError as exc:
            logger.warning(
                "Skipping malformed record %s[%s]@%s: %s (raw=%r)",
                record.topic,
                record.partition,
                record.offset,
                exc,
                exc.raw,
            )
        except Exception:
            logger.error(
                "Failed to handle record %s[%s]@%s; leaving it for redelivery.",
                record.topic,
                record.partition,
                record.offset,
                exc_info=True,
            )
            await self.source.rewind(record)
            await self._pause()
            return True

        await self.source.commit(record)
        return True

    async def _pause(self) -> None:
        try:
            await asyncio.wait_for(
                self._stopping.wait(), timeout=self.redelivery_delay_seconds
            )
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        """Consume until :meth:`stop` is called, then close the source."""

        logger.info("Simulation counts consumer started.")
        try:
            while not self._stopping.is_set():
                try:
                    if not await self.process_next():
                        await asyncio.sleep(0)
                except Exception:
                    # Broker-side failure (poll, commit or rewind).
                    logger.error("Counts consumer poll cycle failed.", exc_info=True)
                    await self._pause()
        finally:
            await self.source.close()
            logger.info("Simulation counts consumer stopped.")

    def stop(self) -> None:
        """Request shutdown; the record in flight is finished first."""

        self._stopping.set()
