"""
Admission control tests.

Verifies that:
1. At most max_concurrent tasks are active at any time
2. Queued tasks start in submission order
3. Slots are released on success and on failure
4. Cancelled waiters neither leak nor steal slots
5. The optional queue limit rejects excess submissions
"""

import asyncio

import pytest

from substream.execution.admission import AdmissionController
from substream.execution.errors import AdmissionRejectedError


class TestAdmissionBounds:

    def test_never_exceeds_max_concurrent(self):
        """
        GIVEN: max_concurrent=3 and 10 submissions
        WHEN: all are submitted at once
        THEN: no more than 3 run at the same time, and all complete
        """
        async def scenario():
            controller = AdmissionController(max_concurrent=3)
            running = 0
            peak = 0

            async def task():
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                running -= 1
                return "done"

            results = await asyncio.gather(*(controller.submit(task) for _ in range(10)))
            return peak, results, controller.stats()

        peak, results, stats = asyncio.run(scenario())

        assert peak == 3
        assert results == ["done"] * 10
        assert stats.active == 0
        assert stats.queued == 0

    def test_queued_tasks_start_in_submission_order(self):
        """
        GIVEN: N=2 slots and N+k submissions
        WHEN: slots free up
        THEN: the k queued tasks start in the order they were submitted
        """
        async def scenario():
            controller = AdmissionController(max_concurrent=2)
            started = []
            gates = {i: asyncio.Event() for i in range(6)}

            def make_task(i):
                async def task():
                    started.append(i)
                    await gates[i].wait()
                    return i
                return task

            futures = [asyncio.ensure_future(controller.submit(make_task(i))) for i in range(6)]
            await asyncio.sleep(0)
            assert started == [0, 1]
            assert controller.stats().queued == 4

            # Release out of order; queued tasks must still start FIFO
            for i in (1, 0, 3, 2, 5, 4):
                gates[i].set()
                await asyncio.sleep(0.01)

            return started, await asyncio.gather(*futures)

        started, results = asyncio.run(scenario())

        assert started == [0, 1, 2, 3, 4, 5]
        assert results == [0, 1, 2, 3, 4, 5]

    def test_single_slot_serializes_execution(self):
        """Two jobs with max_concurrent=1 never overlap."""
        async def scenario():
            controller = AdmissionController(max_concurrent=1)
            windows = []
            loop = asyncio.get_running_loop()

            async def task():
                start = loop.time()
                await asyncio.sleep(0.05)
                windows.append((start, loop.time()))

            await asyncio.gather(controller.submit(task), controller.submit(task))
            return windows

        windows = asyncio.run(scenario())

        assert len(windows) == 2
        first, second = windows
        assert second[0] >= first[1]

    def test_rejects_invalid_max(self):
        with pytest.raises(ValueError):
            AdmissionController(max_concurrent=0)


class TestAdmissionRelease:

    def test_slot_released_when_task_fails(self):
        async def scenario():
            controller = AdmissionController(max_concurrent=1)

            async def failing():
                raise RuntimeError("boom")

            async def ok():
                return 42

            with pytest.raises(RuntimeError):
                await controller.submit(failing)
            result = await controller.submit(ok)
            return result, controller.stats()

        result, stats = asyncio.run(scenario())

        assert result == 42
        assert stats.active == 0

    def test_slot_release_is_idempotent(self):
        async def scenario():
            controller = AdmissionController(max_concurrent=2)
            first = await controller.acquire()
            second = await controller.acquire()
            first.release()
            first.release()
            first.release()
            stats = controller.stats()
            second.release()
            return stats, controller.stats()

        during, after = asyncio.run(scenario())

        assert during.active == 1
        assert after.active == 0

    def test_new_submission_cannot_overtake_queue(self):
        """
        A released slot goes to the oldest waiter even if a new acquire()
        arrives in the same loop iteration.
        """
        async def scenario():
            controller = AdmissionController(max_concurrent=1)
            order = []

            holder = await controller.acquire()

            async def waiter(name):
                slot = await controller.acquire()
                order.append(name)
                slot.release()

            queued = asyncio.ensure_future(waiter("queued"))
            await asyncio.sleep(0)
            holder.release()
            late = asyncio.ensure_future(waiter("late"))
            await asyncio.gather(queued, late)
            return order

        assert asyncio.run(scenario()) == ["queued", "late"]


class TestAdmissionCancellation:

    def test_cancelled_waiter_leaves_queue(self):
        async def scenario():
            controller = AdmissionController(max_concurrent=1)
            holder = await controller.acquire()

            waiter = asyncio.ensure_future(controller.acquire())
            await asyncio.sleep(0)
            assert controller.stats().queued == 1

            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter
            queued_after_cancel = controller.stats().queued

            holder.release()
            return queued_after_cancel, controller.stats()

        queued_after_cancel, stats = asyncio.run(scenario())

        assert queued_after_cancel == 0
        assert stats.active == 0

    def test_slot_handed_to_cancelled_waiter_is_passed_on(self):
        """
        GIVEN: a waiter that is handed a slot and cancelled before it resumes
        THEN: the slot goes to the next waiter instead of leaking
        """
        async def scenario():
            controller = AdmissionController(max_concurrent=1)
            holder = await controller.acquire()

            first = asyncio.ensure_future(controller.acquire())
            second = asyncio.ensure_future(controller.acquire())
            await asyncio.sleep(0)

            holder.release()  # hands the slot to `first`
            first.cancel()  # ...which is cancelled before running
            with pytest.raises(asyncio.CancelledError):
                await first

            slot = await asyncio.wait_for(second, timeout=1)
            stats = controller.stats()
            slot.release()
            return stats, controller.stats()

        during, after = asyncio.run(scenario())

        assert during.active == 1
        assert during.queued == 0
        assert after.active == 0


class TestAdmissionStats:

    def test_stats_reports_active_queued_and_max(self):
        async def scenario():
            controller = AdmissionController(max_concurrent=2)
            gate = asyncio.Event()

            async def task():
                await gate.wait()

            futures = [asyncio.ensure_future(controller.submit(task)) for _ in range(5)]
            await asyncio.sleep(0)
            snapshot = controller.stats()
            again = controller.stats()
            gate.set()
            await asyncio.gather(*futures)
            return snapshot, again

        snapshot, again = asyncio.run(scenario())

        assert snapshot.as_dict() == {"active": 2, "queued": 3, "max": 2}
        assert again == snapshot

    def test_queue_limit_rejects_excess(self):
        async def scenario():
            controller = AdmissionController(max_concurrent=1, max_queued=1)
            holder = await controller.acquire()
            queued = asyncio.ensure_future(controller.acquire())
            await asyncio.sleep(0)

            with pytest.raises(AdmissionRejectedError):
                await controller.acquire()

            holder.release()
            slot = await queued
            slot.release()
            return controller.stats()

        stats = asyncio.run(scenario())

        assert stats.active == 0
        assert stats.queued == 0
