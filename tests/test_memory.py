"""Shared memory tests: append policy and per-run scoping."""
import asyncio

import pytest

from hivelang.memory import InMemoryBackend, MemoryStore


def run(coro):
    return asyncio.run(coro)


def test_append_builds_a_list(store):
    memory = store.scope("run-a")

    async def scenario():
        await memory.append("log", "a")
        await memory.append("log", "b")
        return await memory.get("log")

    assert run(scenario()) == ["a", "b"]


def test_append_wraps_existing_scalar(store):
    memory = store.scope("run-a")

    async def scenario():
        await memory.set("log", "first")
        await memory.append("log", "second")
        return await memory.get("log")

    assert run(scenario()) == ["first", "second"]


def test_append_wraps_existing_dict(store):
    memory = store.scope("run-a")

    async def scenario():
        await memory.set("log", {"a": 1})
        await memory.append("log", 2)
        return await memory.get("log")

    assert run(scenario()) == [{"a": 1}, 2]


@pytest.mark.parametrize("existing, expected", [
    (None, ["x"]),
    (0, [0, "x"]),
    ("", ["", "x"]),
    (False, [False, "x"]),
])
def test_append_keeps_falsy_existing_value(store, existing, expected):
    memory = store.scope("run-a")

    async def scenario():
        await memory.set("log", existing)
        await memory.append("log", "x")
        return await memory.get("log")

    assert run(scenario()) == expected


def test_get_missing_key_is_none(store):
    assert run(store.scope("run-a").get("nothing")) is None


def test_runs_do_not_see_each_other(store):
    a, b = store.scope("run-a"), store.scope("run-b")

    async def scenario():
        await a.set("answer", 1)
        await b.set("answer", 2)
        return await a.get("answer"), await b.get("answer")

    assert run(scenario()) == (1, 2)


def test_concurrent_runs_stay_isolated(store):
    async def worker(run_id):
        memory = store.scope(run_id)
        for i in range(5):
            await memory.append("seen", f"{run_id}-{i}")
            await asyncio.sleep(0)
        return await memory.get("seen")

    async def scenario():
        return await asyncio.gather(worker("r1"), worker("r2"))

    first, second = run(scenario())
    assert first == [f"r1-{i}" for i in range(5)]
    assert second == [f"r2-{i}" for i in range(5)]


def test_values_are_copied_in_and_out(store):
    memory = store.scope("run-a")
    original = {"items": [1]}

    async def scenario():
        await memory.set("d", original)
        original["items"].append(2)
        fetched = await memory.get("d")
        fetched["items"].append(3)
        return await memory.get("d")

    assert run(scenario()) == {"items": [1]}


def test_snapshot_and_discard():
    backend = InMemoryBackend()
    store = MemoryStore(backend)
    memory = store.scope("run-a")

    async def scenario():
        await memory.set("x", 1)
        await memory.append("y", "z")
        snap = await memory.snapshot()
        await store.discard("run-a")
        return snap, await memory.get("x")

    snap, after = run(scenario())
    assert snap == {"x": 1, "y": ["z"]}
    assert after is None
    assert backend.namespaces() == []
