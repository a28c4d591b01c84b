"""
Tests for RecordMutationQueue: per-record serialisation, parallel execution
across records, error propagation, and shutdown.
"""

from __future__ import annotations

import asyncio
import time
import unittest
from unittest.mock import AsyncMock

from servicepro_sync.record_queue import RecordMutationQueue


class TestRecordMutationQueue(unittest.IsolatedAsyncioTestCase):

    async def test_result_returned_via_future(self):
        queue = RecordMutationQueue()
        fut = queue.enqueue("1", AsyncMock(return_value="result"))
        result = await asyncio.wait_for(fut, timeout=2)
        self.assertEqual(result, "result")
        await queue.shutdown()

    async def test_same_record_runs_in_order_one_at_a_time(self):
        queue = RecordMutationQueue()
        events = []

        async def job(name, delay):
            events.append(f"start {name}")
            await asyncio.sleep(delay)
            events.append(f"end {name}")
            return name

        fut1 = queue.enqueue("1", lambda: job("a", 0.1))
        fut2 = queue.enqueue("1", lambda: job("b", 0.0))

        results = await asyncio.wait_for(asyncio.gather(fut1, fut2), timeout=2)

        self.assertEqual(results, ["a", "b"])
        self.assertEqual(events, ["start a", "end a", "start b", "end b"])
        await queue.shutdown()

    async def test_every_job_executes(self):
        """Unlike a de-duplicating queue, each enqueued mutation must run."""
        queue = RecordMutationQueue()
        calls = []

        async def job(n):
            calls.append(n)

        futs = [queue.enqueue("1", lambda n=n: job(n)) for n in range(3)]
        await asyncio.wait_for(asyncio.gather(*futs), timeout=2)
        self.assertEqual(calls, [0, 1, 2])
        await queue.shutdown()

    async def test_different_records_run_in_parallel(self):
        """Jobs for record 1 and record 2 should not block each other."""
        queue = RecordMutationQueue()
        start_times = {}
        end_times = {}

        async def timed_job(record_id):
            start_times[record_id] = time.monotonic()
            await asyncio.sleep(0.1)
            end_times[record_id] = time.monotonic()
            return record_id

        fut1 = queue.enqueue("1", lambda: timed_job("1"))
        fut2 = queue.enqueue("2", lambda: timed_job("2"))

        await asyncio.gather(
            asyncio.wait_for(fut1, timeout=2),
            asyncio.wait_for(fut2, timeout=2),
        )

        overlap = start_times["2"] < end_times["1"] and start_times["1"] < end_times["2"]
        self.assertTrue(overlap, "Jobs for different records should run in parallel")
        await queue.shutdown()

    async def test_exception_propagates_via_future(self):
        queue = RecordMutationQueue()

        async def failing_job():
            raise ValueError("boom")

        fut = queue.enqueue("1", failing_job)
        with self.assertRaises(ValueError):
            await asyncio.wait_for(fut, timeout=2)
        await queue.shutdown()

    async def test_failure_does_not_stop_later_jobs(self):
        queue = RecordMutationQueue()

        async def failing_job():
            raise ValueError("boom")

        fut1 = queue.enqueue("1", failing_job)
        fut2 = queue.enqueue("1", AsyncMock(return_value="ok"))

        with self.assertRaises(ValueError):
            await asyncio.wait_for(fut1, timeout=2)
        self.assertEqual(await asyncio.wait_for(fut2, timeout=2), "ok")
        await queue.shutdown()

    async def test_pending_count_tracks_queued_jobs(self):
        queue = RecordMutationQueue()
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()

        fut1 = queue.enqueue("1", blocked)
        fut2 = queue.enqueue("1", blocked)
        self.assertEqual(queue.pending_count("1"), 2)
        self.assertEqual(queue.pending_count("other"), 0)

        gate.set()
        await asyncio.wait_for(asyncio.gather(fut1, fut2), timeout=2)
        self.assertEqual(queue.pending_count("1"), 0)
        await queue.shutdown()

    async def test_shutdown_cancels_workers_and_queued_jobs(self):
        queue = RecordMutationQueue()
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()

        running = queue.enqueue("1", blocked)
        waiting = queue.enqueue("1", blocked)
        await asyncio.sleep(0.05)
        await queue.shutdown()

        self.assertEqual(len(queue._workers), 0)
        self.assertTrue(running.cancelled())
        self.assertTrue(waiting.cancelled())

    async def test_idle_records_release_their_workers(self):
        queue = RecordMutationQueue()
        futs = [queue.enqueue(str(n), AsyncMock(return_value=n)) for n in range(200)]
        await asyncio.wait_for(asyncio.gather(*futs), timeout=2)

        self.assertEqual(queue._workers, {})
        self.assertEqual(queue._queues, {})
        self.assertEqual(queue._pending, {})
        await queue.shutdown()

    async def test_record_gets_new_worker_after_going_idle(self):
        queue = RecordMutationQueue()
        await asyncio.wait_for(queue.enqueue("1", AsyncMock(return_value="first")), timeout=2)
        self.assertNotIn("1", queue._workers)

        second = queue.enqueue("1", AsyncMock(return_value="second"))
        self.assertIn("1", queue._workers)
        self.assertEqual(await asyncio.wait_for(second, timeout=2), "second")
        self.assertEqual(queue.pending_count("1"), 0)
        await queue.shutdown()

    async def test_job_enqueued_from_running_job_keeps_worker(self):
        queue = RecordMutationQueue()
        follow_up = []

        async def first():
            follow_up.append(queue.enqueue("1", AsyncMock(return_value="follow-up")))
            return "first"

        self.assertEqual(await asyncio.wait_for(queue.enqueue("1", first), timeout=2), "first")
        self.assertEqual(await asyncio.wait_for(follow_up[0], timeout=2), "follow-up")
        self.assertEqual(queue._workers, {})
        await queue.shutdown()
