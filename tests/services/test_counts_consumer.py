import json
from collections import deque

import pytest
from sqlalchemy import select

from app.models.count import Count
from app.models.simulation import Simulation, SimulationStatus
from app.services import counts_consumer as consumer_module
from app.services.counts_consumer import SimulationCountsConsumer
from app.services.message_source import InboundMessage


class _FakeSource:
    """In-memory stand-in for the Kafka source."""

    def __init__(self, values, key: bytes = b"42"):
        self._pending = deque(
            InboundMessage(
                topic="counts_updated",
                partition=0,
                offset=offset,
                key=key,
                value=value if isinstance(value, bytes) else json.dumps(value).encode(),
            )
            for offset, value in enumerate(values)
        )
        self.committed: list[int] = []
        self.rewound: list[int] = []
        self.closed = False
        self.on_empty = None

    async def poll(self):
        if self._pending:
            return self._pending.popleft()
        if self.on_empty is not None:
            self.on_empty()
        return None

    async def commit(self, message):
        self.committed.append(message.offset)

    async def rewind(self, message):
        self.rewound.append(message.offset)
        self._pending.appendleft(message)

    async def close(self):
        self.closed = True


async def _drain(consumer: SimulationCountsConsumer) -> None:
    while await consumer.process_next():
        pass


async def _count(session_factory, simulation_id: int, hour: int) -> Count | None:
    async with session_factory() as db:
        stmt = select(Count).where(Count.simulation_id == simulation_id, Count.hour == hour)
        return (await db.execute(stmt)).scalar_one_or_none()


async def _simulation(session_factory, simulation_id: int) -> Simulation | None:
    async with session_factory() as db:
        return await db.get(Simulation, simulation_id)


@pytest.mark.asyncio
async def test_full_simulation_scenario(session_factory):
    # Arrange
    source = _FakeSource(
        [
            {"hour": 1, "infected": 5},
            {"hour": 2, "infected": 8},
            {"intervention": "lockdown", "hour": 2, "data": {"status": "done"}},
            {"simulation_ended": True},
        ]
    )
    consumer = SimulationCountsConsumer(source, session_factory, redelivery_delay_seconds=0)

    # Act
    await _drain(consumer)

    # Assert
    assert source.committed == [0, 1, 2, 3]
    simulation = await _simulation(session_factory, 42)
    assert simulation.status == SimulationStatus.FINISHED
    hour_1 = await _count(session_factory, 42, 1)
    assert hour_1.infected == 5
    hour_2 = await _count(session_factory, 42, 2)
    assert hour_2.infected == 8
    assert hour_2.interventions == [{"intervention": "lockdown", "data": {"status": "done"}}]


@pytest.mark.asyncio
async def test_hour_one_marks_simulation_running(session_factory):
    source = _FakeSource([{"hour": 1, "susceptible": 99, "infected": 1}])
    consumer = SimulationCountsConsumer(source, session_factory, redelivery_delay_seconds=0)

    await _drain(consumer)

    simulation = await _simulation(session_factory, 42)
    assert simulation.status == SimulationStatus.RUNNING
    hour_1 = await _count(session_factory, 42, 1)
    assert hour_1.susceptible == 99


@pytest.mark.asyncio
async def test_later_hours_do_not_touch_status(session_factory):
    source = _FakeSource([{"hour": 5, "infected": 1}])
    consumer = SimulationCountsConsumer(source, session_factory, redelivery_delay_seconds=0)

    await _drain(consumer)

    assert await _simulation(session_factory, 42) is None
    assert (await _count(session_factory, 42, 5)).infected == 1


@pytest.mark.asyncio
async def test_repeated_intervention_is_stored_once(session_factory):
    payload = {"hour": 12, "intervention": "x", "data": {"a": 1}}
    source = _FakeSource([payload, payload])
    consumer = SimulationCountsConsumer(source, session_factory, redelivery_delay_seconds=0)

    await _drain(consumer)

    assert source.committed == [0, 1]
    assert len((await _count(session_factory, 42, 12)).interventions) == 1


@pytest.mark.asyncio
async def test_malformed_record_is_skipped_and_committed(session_factory):
    # Arrange
    source = _FakeSource([b"not json", {"infected": 3}, {"hour": 3, "infected": 3}])
    consumer = SimulationCountsConsumer(source, session_factory, redelivery_delay_seconds=0)

    # Act
    await _drain(consumer)

    # Assert
    assert source.committed == [0, 1, 2]
    assert source.rewound == []
    assert (await _count(session_factory, 42, 3)).infected == 3


@pytest.mark.asyncio
async def test_store_failure_leaves_record_for_redelivery(session_factory, monkeypatch):
    # Arrange
    source = _FakeSource([{"hour": 2, "infected": 8}])
    consumer = SimulationCountsConsumer(source, session_factory, redelivery_delay_seconds=0)
    real_upsert = consumer_module.upsert_count

    async def _failing_upsert(*args, **kwargs):
        raise ConnectionError("database unavailable")

    monkeypatch.setattr(consumer_module, "upsert_count", _failing_upsert)

    # Act: first attempt fails
    assert await consumer.process_next() is True

    # Assert
    assert source.committed == []
    assert source.rewound == [0]
    assert await _count(session_factory, 42, 2) is None

    # Act: store is back, the same record is redelivered
    monkeypatch.setattr(consumer_module, "upsert_count", real_upsert)
    await _drain(consumer)

    # Assert
    assert source.committed == [0]
    assert (await _count(session_factory, 42, 2)).infected == 8


@pytest.mark.asyncio
async def test_status_failure_on_hour_one_skips_count_and_commit(session_factory, monkeypatch):
    source = _FakeSource([{"hour": 1, "infected": 5}])
    consumer = SimulationCountsConsumer(source, session_factory, redelivery_delay_seconds=0)

    async def _failing_status(*args, **kwargs):
        raise ConnectionError("database unavailable")

    monkeypatch.setattr(consumer_module, "update_simulation_status", _failing_status)

    await consumer.process_next()

    assert source.committed == []
    assert await _count(session_factory, 42, 1) is None


@pytest.mark.asyncio
async def test_run_stops_and_closes_source(session_factory):
    # Arrange
    source = _FakeSource([{"hour": 1, "infected": 5}, {"simulation_ended": True}])
    consumer = SimulationCountsConsumer(source, session_factory, redelivery_delay_seconds=0)
    source.on_empty = consumer.stop

    # Act
    await consumer.run()

    # Assert
    assert source.closed is True
    assert source.committed == [0, 1]
    assert (await _simulation(session_factory, 42)).status == SimulationStatus.FINISHED


@pytest.mark.asyncio
async def test_run_survives_broker_errors(session_factory):
    # Arrange
    source = _FakeSource([{"hour": 3, "infected": 2}])
    consumer = SimulationCountsConsumer(source, session_factory, redelivery_delay_seconds=0)
    calls = {"commit": 0}
    real_commit = source.commit

    async def _flaky_commit(message):
        calls["commit"] += 1
        if calls["commit"] == 1:
            raise ConnectionError("broker unavailable")
        await real_commit(message)

    source.commit = _flaky_commit
    source.on_empty = consumer.stop

    # Act
    await consumer.run()

    # Assert: the loop kept going after the failed commit and closed cleanly
    assert calls["commit"] == 1
    assert source.closed is True
    assert (await _count(session_factory, 42, 3)).infected == 2


@pytest.mark.asyncio
async def test_out_of_range_hour_is_skipped_not_redelivered(session_factory):
    # Arrange
    source = _FakeSource([{"hour": 2**64, "infected": 1}, {"hour": 4, "infected": 1}])
    consumer = SimulationCountsConsumer(source, session_factory, redelivery_delay_seconds=0)

    # Act
    await _drain(consumer)

    # Assert
    assert source.committed == [0, 1]
    assert source.rewound == []
    assert (await _count(session_factory, 42, 4)).infected == 1


@pytest.mark.asyncio
async def test_out_of_range_simulation_key_is_skipped(session_factory):
    source = _FakeSource([{"simulation_ended": True}], key=str(2**31).encode())
    consumer = SimulationCountsConsumer(source, session_factory, redelivery_delay_seconds=0)

    await _drain(consumer)

    assert source.committed == [0]
    assert source.rewound == []


@pytest.mark.asyncio
async def test_fractional_agent_count_is_skipped(session_factory):
    source = _FakeSource([{"hour": 3, "infected": 5.5}])
    consumer = SimulationCountsConsumer(source, session_factory, redelivery_delay_seconds=0)

    await _drain(consumer)

    assert source.committed == [0]
    assert await _count(session_factory, 42, 3) is None
