import asyncio

import pytest

from channel_bridge.services.background import BackgroundWork


async def _noop():
    return None


class TestBackgroundWork:
    @pytest.mark.asyncio
    async def test_scope_collects_work_spawned_by_child_tasks(self):
        background = BackgroundWork()

        async def child():
            await asyncio.sleep(0)
            background.spawn(_noop(), name="from-child")

        with background.scope() as spawned:
            direct = background.spawn(_noop(), name="direct")
            task = asyncio.ensure_future(child())
        outside = background.spawn(_noop(), name="outside")
        await task

        assert direct in spawned
        assert outside not in spawned
        assert len(spawned) == 2
        await background.wait_for(spawned)
        assert all(t.done() for t in spawned)
        await background.join()

    @pytest.mark.asyncio
    async def test_join_timeout_leaves_work_running(self):
        background = BackgroundWork()
        release = asyncio.Event()
        slow = background.spawn(release.wait(), name="slow")

        await background.join(timeout=0.01)

        assert not slow.done()
        release.set()
        await background.join()
        assert slow.done()

    @pytest.mark.asyncio
    async def test_full_queue_drops_new_work(self):
        background = BackgroundWork(max_pending=1)
        release = asyncio.Event()
        background.spawn(release.wait())

        assert background.spawn(_noop()) is None
        assert background.dropped == 1
        release.set()
        await background.join()
