from __future__ import annotations

import asyncio

from progress_engine.services.keyed_lock import KeyedLock


def test_same_key_is_serialized() -> None:
    async def scenario() -> list[str]:
        locks = KeyedLock()
        events: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold(("u", 1)):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))
        return events

    assert asyncio.run(scenario()) == ["a-start", "a-end", "b-start", "b-end"]


def test_different_keys_do_not_wait() -> None:
    async def scenario() -> list[str]:
        locks = KeyedLock()
        events: list[str] = []

        async def worker(course_id: int) -> None:
            async with locks.hold(("u", course_id)):
                events.append(f"{course_id}-start")
                await asyncio.sleep(0.01)
                events.append(f"{course_id}-end")

        await asyncio.gather(worker(1), worker(2))
        return events

    events = asyncio.run(scenario())
    assert events[:2] == ["1-start", "2-start"]


def test_locks_are_dropped_after_use() -> None:
    async def scenario() -> tuple[bool, int]:
        locks = KeyedLock()
        async with locks.hold("k"):
            held = locks.locked("k")
        return held, len(locks)

    held, remaining = asyncio.run(scenario())
    assert held is True
    assert remaining == 0
