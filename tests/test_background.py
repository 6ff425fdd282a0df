"""
Tests for the background task runner.
"""

import asyncio

import pytest

from core.background import BackgroundTaskRunner


class TestBackgroundTaskRunner:
    @pytest.mark.asyncio
    async def test_failure_is_recorded_not_raised(self):
        seen = []
        runner = BackgroundTaskRunner(on_error=seen.append)

        async def fails():
            raise RuntimeError("title model unavailable")

        runner.submit("chat-title:abc", fails())
        await runner.drain(timeout=1)
        await asyncio.sleep(0)

        failures = runner.failures()
        assert len(failures) == 1
        assert failures[0].name == "chat-title:abc"
        assert str(failures[0].error) == "title model unavailable"
        assert seen == failures
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_success_leaves_no_failure(self):
        runner = BackgroundTaskRunner()

        async def works():
            return 42

        task = runner.submit("cache-preload", works())
        await runner.drain(timeout=1)

        assert task.result() == 42
        assert runner.failures() == []

    @pytest.mark.asyncio
    async def test_shutdown_cancels_stragglers(self):
        runner = BackgroundTaskRunner()
        task = runner.submit("slow", asyncio.sleep(10))

        await runner.shutdown(timeout=0.01)

        assert task.cancelled()
        assert runner.failures() == []

    @pytest.mark.asyncio
    async def test_failure_history_is_bounded(self):
        runner = BackgroundTaskRunner(max_failures=2)

        async def fails(i):
            raise ValueError(i)

        for i in range(5):
            runner.submit(f"job-{i}", fails(i))
        await runner.drain(timeout=1)
        await asyncio.sleep(0)

        assert [f.name for f in runner.failures()] == ["job-3", "job-4"]
