import pytest

from app.services import counts_consumer_runner as runner


class _IdleSource:
    def __init__(self):
        self.polls = 0
        self.closed = False

    async def poll(self):
        self.polls += 1
        return None

    async def commit(self, message):  # pragma: no cover - never called
        raise AssertionError("nothing to commit")

    async def rewind(self, message):  # pragma: no cover - never called
        raise AssertionError("nothing to rewind")

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_consumer_disabled_by_settings(monkeypatch):
    monkeypatch.setattr(runner._settings, "counts_consumer_enabled", False)
    source = _IdleSource()

    await runner.start_counts_consumer(source)

    assert runner._task is None
    assert source.polls == 0


@pytest.mark.asyncio
async def test_start_and_shutdown_consumer(monkeypatch):
    # Arrange
    monkeypatch.setattr(runner._settings, "counts_consumer_enabled", True)
    source = _IdleSource()

    # Act
    await runner.start_counts_consumer(source)
    task = runner._task
    await runner.start_counts_consumer(_IdleSource())  # second start is a no-op
    await runner.shutdown_counts_consumer()

    # Assert
    assert task is not None and task.done()
    assert source.closed is True
    assert runner._task is None
    assert runner._consumer is None
