"""调度器测试"""

import asyncio

import pytest

from ops_monitor.services.scheduler import PeriodicTask, TickScheduler
from ops_monitor.utils.exceptions import SchedulerError


class TestPeriodicTask:
    """周期任务测试类"""

    def test_invalid_interval(self):
        with pytest.raises(SchedulerError):
            PeriodicTask('bad', 0, lambda: None)

    @pytest.mark.asyncio
    async def test_run_once_sync_and_async(self):
        """测试同步函数和协程函数都可以作为 tick"""
        async def async_tick():
            return 'async'

        assert await PeriodicTask('sync', 1, lambda: 'sync').run_once() == 'sync'
        assert await PeriodicTask('async', 1, async_tick).run_once() == 'async'

    @pytest.mark.asyncio
    async def test_run_once_error_is_counted(self):
        def failing_tick():
            raise RuntimeError("tick 失败")

        task = PeriodicTask('failing', 1, failing_tick)

        result = await task.run_once()

        assert result is None
        assert task.error_count == 1
        assert task.run_count == 1
        assert task.last_error == "tick 失败"

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self):
        """测试 tick 抛出异常后循环继续"""
        calls = []

        def flaky_tick():
            calls.append(1)
            raise ValueError("boom")

        task = PeriodicTask('flaky', 0.01, flaky_tick)
        await task.start()
        await asyncio.sleep(0.05)
        await task.stop()

        assert len(calls) >= 2
        assert task.error_count == len(calls)
        assert task.is_running is False

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        task = PeriodicTask('once', 10, lambda: None)

        await task.start()
        first_loop = task._loop_task
        await task.start()

        assert task._loop_task is first_loop
        await task.stop()

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_tick(self):
        """测试停止时等待正在执行的 tick 完成"""
        finished = []

        async def slow_tick():
            await asyncio.sleep(0.05)
            finished.append(True)

        task = PeriodicTask('slow', 10, slow_tick)
        await task.start()
        await asyncio.sleep(0.01)
        await task.stop()

        assert finished == [True]

    @pytest.mark.asyncio
    async def test_run_immediately_false(self):
        calls = []
        task = PeriodicTask('delayed', 10, lambda: calls.append(1), run_immediately=False)

        await task.start()
        await asyncio.sleep(0.02)
        await task.stop()

        assert calls == []

    @pytest.mark.asyncio
    async def test_ticks_do_not_overlap(self):
        running = []
        overlaps = []

        async def tick():
            if running:
                overlaps.append(True)
            running.append(True)
            await asyncio.sleep(0.02)
            running.pop()

        task = PeriodicTask('exclusive', 10, tick)
        await asyncio.gather(task.run_once(), task.run_once(), task.run_once())

        assert overlaps == []
        assert task.run_count == 3

    def test_stats(self):
        stats = PeriodicTask('cleanup', 3600, lambda: None).get_stats()

        assert stats['name'] == 'cleanup'
        assert stats['interval'] == 3600
        assert stats['run_count'] == 0
        assert stats['last_run_at'] is None


class TestTickScheduler:
    """调度器测试类"""

    def setup_method(self):
        self.scheduler = TickScheduler()

    def test_add_duplicate_task(self):
        self.scheduler.add_task('cleanup', 60, lambda: None)

        with pytest.raises(SchedulerError):
            self.scheduler.add_task('cleanup', 60, lambda: None)

    def test_register_existing_task(self):
        task = PeriodicTask('health_check', 60, lambda: None)

        assert self.scheduler.register(task) is task
        assert self.scheduler.tasks['health_check'] is task

    @pytest.mark.asyncio
    async def test_run_now(self):
        self.scheduler.add_task('sample', 60, lambda: 42)

        assert await self.scheduler.run_now('sample') == 42

        with pytest.raises(SchedulerError):
            await self.scheduler.run_now('missing')

    @pytest.mark.asyncio
    async def test_start_and_stop_all(self):
        calls = []
        self.scheduler.add_task('a', 10, lambda: calls.append('a'))
        self.scheduler.add_task('b', 10, lambda: calls.append('b'))

        await self.scheduler.start_all()
        await asyncio.sleep(0.02)
        stats = self.scheduler.get_scheduler_stats()
        await self.scheduler.stop_all()

        assert sorted(calls) == ['a', 'b']
        assert stats['is_running'] is True
        assert stats['total_tasks'] == 2
        assert stats['tasks']['a']['is_running'] is True
        assert self.scheduler.is_running is False
        assert not any(task.is_running for task in self.scheduler.tasks.values())

    @pytest.mark.asyncio
    async def test_remove_task_stops_it(self):
        task = self.scheduler.add_task('a', 10, lambda: None)
        await self.scheduler.start_all()

        assert await self.scheduler.remove_task('a') is True
        assert task.is_running is False
        assert await self.scheduler.remove_task('a') is False

        await self.scheduler.stop_all()
