import asyncio
import threading

import pytest

from correlauth.storage.errors import StaleSecret
from correlauth.storage.memory import MemoryStore
from correlauth.storage.models import CorrelationRecord, CorrelationState


class TestMemoryStore:
    """In-memory correlation storage."""

    async def test_create_returns_distinct_unfamiliar_records(self, memory_store):
        first = await memory_store.create()
        second = await memory_store.create()

        assert first.id != second.id
        assert first.is_unfamiliar and second.is_unfamiliar
        assert first.secret == ""

    async def test_fetch_unknown(self, memory_store):
        assert await memory_store.fetch("missing") is None

    async def test_fetch_confirms_once(self, memory_store):
        record = await memory_store.create()

        fetched = await memory_store.fetch(record.id)

        assert fetched.state is CorrelationState.ESTABLISHED
        assert memory_store.correlations[record.id].state is CorrelationState.ESTABLISHED

    async def test_confirmation_can_be_disabled(self):
        store = MemoryStore(confirm_on_fetch=False)
        record = await store.create()

        assert (await store.fetch(record.id)).is_unfamiliar

    async def test_update_swaps_matching_secret(self, memory_store):
        memory_store.put(CorrelationRecord("10", "OpenDoor", CorrelationState.ESTABLISHED))

        updated = await memory_store.update("10", "SECRET", expected_secret="OpenDoor")

        assert updated == CorrelationRecord("10", "SECRET", CorrelationState.ESTABLISHED)
        assert memory_store.correlations["10"] == updated

    async def test_update_rejects_stale_secret(self, memory_store):
        memory_store.put(CorrelationRecord("10", "CloseDoor", CorrelationState.ESTABLISHED))

        with pytest.raises(StaleSecret):
            await memory_store.update("10", "SECRET", expected_secret="OpenDoor")

        assert memory_store.correlations["10"].secret == "CloseDoor"

    async def test_update_missing_record(self, memory_store):
        with pytest.raises(StaleSecret):
            await memory_store.update("10", "SECRET", expected_secret="")

    async def test_update_with_non_ascii_secret(self, memory_store):
        memory_store.put(CorrelationRecord("10", "tür", CorrelationState.ESTABLISHED))

        with pytest.raises(StaleSecret):
            await memory_store.update("10", "SECRET", expected_secret="tor")


def test_concurrent_updates_from_threads():
    """Threads racing on one expected secret: exactly one swap wins."""

    store = MemoryStore()
    store.put(CorrelationRecord("10", "OpenDoor", CorrelationState.ESTABLISHED))
    outcomes = []
    barrier = threading.Barrier(8)

    def rotate(index):
        barrier.wait()
        try:
            asyncio.run(store.update("10", f"secret-{index}", expected_secret="OpenDoor"))
            outcomes.append("won")
        except StaleSecret:
            outcomes.append("lost")

    threads = [threading.Thread(target=rotate, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("won") == 1
    assert outcomes.count("lost") == 7
