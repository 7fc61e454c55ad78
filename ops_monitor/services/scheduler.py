"""调度器模块

把各组件的周期性工作（指标清理、系统采样、规则评估、健康检查、灾难恢复巡检）
建模为显式的定时任务。每个任务持有一个取消令牌，停止时等待正在执行的 tick 结束，
测试中可以直接调用 run_once() 驱动，不必等待真实计时器。
"""

import asyncio
import inspect
import time
from datetime import datetime
from typing import Dict, Any, Optional, Callable

from ..utils.exceptions import SchedulerError
from ..utils.log_manager import get_logger


class PeriodicTask:
    """
    周期任务

    同一任务的 tick 不会重叠；tick 抛出的异常只记录日志和计数，不会终止循环。
    """

    def __init__(self, name: str, interval: float, func: Callable[[], Any],
                 run_immediately: bool = True):
        """
        初始化周期任务

        Args:
            name: 任务名称
            interval: 执行间隔（秒）
            func: 每次 tick 调用的函数，可以是同步函数或协程函数
            run_immediately: 启动后是否立即执行第一次 tick
        """
        if interval <= 0:
            raise SchedulerError(f"任务 {name} 的执行间隔必须是正数", task_name=name)

        self.name = name
        self.interval = interval
        self.func = func
        self.run_immediately = run_immediately

        self._stop_event: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_lock = asyncio.Lock()

        self.run_count = 0
        self.error_count = 0
        self.last_run_at: Optional[datetime] = None
        self.last_duration: Optional[float] = None
        self.last_error: Optional[str] = None
        self.logger = get_logger(f'scheduler.{name}')

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self) -> None:
        """启动任务，重复启动不会报错"""
        if self.is_running:
            self.logger.debug(f"任务 {self.name} 已经在运行")
            return

        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop(self._stop_event))
        self.logger.info(f"启动定时任务 {self.name}，间隔: {self.interval}秒")

    async def stop(self) -> None:
        """停止任务，等待正在执行的 tick 完成后返回"""
        if not self.is_running:
            return

        self._stop_event.set()
        await self._loop_task
        self._loop_task = None
        self.logger.info(f"定时任务 {self.name} 已停止")

    async def run_once(self) -> Any:
        """
        立即执行一次 tick

        Returns:
            tick 函数的返回值，执行失败时返回 None
        """
        async with self._tick_lock:
            start_time = time.time()
            self.last_run_at = datetime.now()
            try:
                result = self.func()
                if inspect.isawaitable(result):
                    result = await result
                self.last_error = None
                return result
            except Exception as e:
                self.error_count += 1
                self.last_error = str(e)
                self.logger.error(f"定时任务 {self.name} 执行异常: {e}", exc_info=True)
                return None
            finally:
                self.run_count += 1
                self.last_duration = time.time() - start_time

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        if not self.run_immediately:
            if await self._wait_or_stop(stop_event):
                return

        while not stop_event.is_set():
            await self.run_once()
            if await self._wait_or_stop(stop_event):
                return

    async def _wait_or_stop(self, stop_event: asyncio.Event) -> bool:
        """等待一个间隔，期间收到停止信号则返回 True"""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return False

    def get_stats(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'interval': self.interval,
            'is_running': self.is_running,
            'run_count': self.run_count,
            'error_count': self.error_count,
            'last_run_at': self.last_run_at.isoformat() if self.last_run_at else None,
            'last_duration': self.last_duration,
            'last_error': self.last_error
        }


class TickScheduler:
    """一组命名的周期任务"""

    def __init__(self):
        self.tasks: Dict[str, PeriodicTask] = {}
        self.is_running = False
        self.logger = get_logger('scheduler')

    def add_task(self, name: str, interval: float, func: Callable[[], Any],
                 run_immediately: bool = True) -> PeriodicTask:
        """
        添加周期任务

        Args:
            name: 任务名称，必须唯一
            interval: 执行间隔（秒）
            func: tick 函数
            run_immediately: 启动后是否立即执行第一次

        Returns:
            PeriodicTask: 新建的任务

        Raises:
            SchedulerError: 名称重复或间隔无效
        """
        return self.register(PeriodicTask(name, interval, func, run_immediately))

    def register(self, task: PeriodicTask) -> PeriodicTask:
        """
        纳管一个组件自己持有的周期任务

        Raises:
            SchedulerError: 名称重复
        """
        if task.name in self.tasks:
            raise SchedulerError(f"任务 {task.name} 已存在", task_name=task.name)

        self.tasks[task.name] = task
        self.logger.debug(f"已添加定时任务: {task.name} ({task.interval}秒)")
        return task

    async def remove_task(self, name: str) -> bool:
        task = self.tasks.pop(name, None)
        if task is None:
            return False
        await task.stop()
        return True

    async def start_all(self) -> None:
        """启动全部任务"""
        if self.is_running:
            self.logger.warning("调度器已经在运行")
            return

        self.is_running = True
        for task in self.tasks.values():
            await task.start()
        self.logger.info(f"调度器已启动，共 {len(self.tasks)} 个定时任务")

    async def stop_all(self) -> None:
        """停止全部任务，等待各自正在执行的 tick 完成"""
        if not self.is_running:
            return

        self.logger.info("正在停止调度器...")
        await asyncio.gather(*(task.stop() for task in self.tasks.values()))
        self.is_running = False
        self.logger.info("调度器已停止")

    async def run_now(self, name: str) -> Any:
        """
        立即执行指定任务的一次 tick

        Raises:
            SchedulerError: 任务不存在
        """
        task = self.tasks.get(name)
        if task is None:
            raise SchedulerError(f"任务 {name} 不存在", task_name=name)
        return await task.run_once()

    def get_scheduler_stats(self) -> Dict[str, Any]:
        """获取调度器统计信息"""
        return {
            'is_running': self.is_running,
            'total_tasks': len(self.tasks),
            'tasks': {name: task.get_stats() for name, task in self.tasks.items()}
        }
