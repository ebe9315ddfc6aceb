from __future__ import annotations

import asyncio
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from eliot_admin.infrastructure.polling import JobPoller


async def _forever() -> None:
    await asyncio.Event().wait()


def test_restarting_a_key_cancels_the_previous_poll():
    poller = JobPoller()

    async def scenario() -> None:
        first = poller.start("extraction", _forever())
        await asyncio.sleep(0)
        second = poller.start("extraction", _forever())
        await asyncio.sleep(0)

        assert first.cancelled()
        assert not second.done()
        assert poller.get("extraction") is second
        assert poller.is_running("extraction")

        poller.cancel_all()
        await asyncio.gather(second, return_exceptions=True)
        assert second.cancelled()

    asyncio.run(scenario())


def test_keys_are_independent_until_cancel_all():
    poller = JobPoller()

    async def scenario() -> list[asyncio.Task]:
        tasks = [poller.start("extraction", _forever()), poller.start("generation", _forever())]
        await asyncio.sleep(0)
        assert poller.is_running("extraction")
        assert poller.is_running("generation")

        poller.cancel_all()
        await asyncio.gather(*tasks, return_exceptions=True)
        assert not poller.is_running("extraction")
        assert not poller.is_running("generation")
        return tasks

    tasks = asyncio.run(scenario())

    assert all(task.cancelled() for task in tasks)


def test_finished_poll_is_forgotten():
    poller = JobPoller()

    async def done() -> str:
        return "job-1"

    async def scenario() -> str:
        task = poller.start("extraction", done())
        result = await task
        await asyncio.sleep(0)
        assert poller.get("extraction") is None
        assert poller.cancel("extraction") is False
        return result

    assert asyncio.run(scenario()) == "job-1"
