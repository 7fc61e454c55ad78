#!/usr/bin/env python3
"""
运维监控系统主应用程序入口

组装指标存储、健康聚合、告警规则、通知分发和灾难恢复组件，
处理命令行参数、信号和优雅关闭。
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from typing import Optional, Dict, Any, Callable

from ops_monitor.alerts.dispatcher import NotificationDispatcher
from ops_monitor.metrics.sampler import SystemMetricsSampler
from ops_monitor.metrics.store import MetricStore
from ops_monitor.models.health import HealthStatus
from ops_monitor.recovery.backup import BaseBackupProvider
from ops_monitor.recovery.supervisor import supervisor_from_config
from ops_monitor.services.config_manager import ConfigManager
from ops_monitor.services.health_aggregator import HealthAggregator
from ops_monitor.services.recovery_orchestrator import DisasterRecoveryOrchestrator
from ops_monitor.services.rule_engine import AlertRuleEngine
from ops_monitor.services.scheduler import TickScheduler
from ops_monitor.utils.exceptions import OpsMonitorError, ConfigError
from ops_monitor.utils.log_manager import log_manager, get_logger

# 版本信息
__version__ = "1.0.0"


class OpsMonitorApp:
    """运维监控系统主应用程序类，负责显式组装所有组件"""

    def __init__(self, config_path: Optional[str] = None,
                 backup_provider: Optional[BaseBackupProvider] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """初始化应用程序

        Args:
            config_path: 配置文件路径，为空时使用默认配置
            backup_provider: 灾难恢复使用的备份提供者
            clock: 时间源，传给所有组件
        """
        self.config_path = config_path
        self.backup_provider = backup_provider
        self.clock = clock
        self.logger: Optional[logging.Logger] = None
        self.is_running = False
        self.shutdown_event = asyncio.Event()

        # 核心组件
        self.config_manager: Optional[ConfigManager] = None
        self.store: Optional[MetricStore] = None
        self.sampler: Optional[SystemMetricsSampler] = None
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.aggregator: Optional[HealthAggregator] = None
        self.rule_engine: Optional[AlertRuleEngine] = None
        self.orchestrator: Optional[DisasterRecoveryOrchestrator] = None
        self.scheduler: Optional[TickScheduler] = None

    async def initialize(self, log_level: Optional[str] = None):
        """初始化应用程序组件

        Args:
            log_level: 覆盖配置文件中的日志级别
        """
        try:
            self.config_manager = ConfigManager(self.config_path)
            self.config_manager.load_config()

            global_config = self.config_manager.get_global_config()
            if log_level:
                global_config['log_level'] = log_level
            log_manager.configure(global_config)
            self.logger = get_logger('main')
            self.logger.info("开始初始化运维监控系统")

            self._build_components()
            self._build_scheduler()

            self.logger.info("应用程序组件初始化完成")

        except Exception as e:
            if self.logger:
                self.logger.error(f"应用程序初始化失败: {e}", exc_info=True)
            else:
                print(f"应用程序初始化失败: {e}", file=sys.stderr)
            raise

    def _build_components(self):
        cm = self.config_manager
        service_name = cm.get_service_name()
        metrics_config = cm.get_metrics_config()
        health_config = cm.get_health_config()
        dr_config = cm.get_disaster_recovery_config()

        self.store = MetricStore.from_config(metrics_config, clock=self.clock)
        if metrics_config.get('enable_system_sampler', True):
            self.sampler = SystemMetricsSampler(self.store)

        self.dispatcher = NotificationDispatcher(service_name, cm.get_channels_config(),
                                                 clock=self.clock)

        self.aggregator = HealthAggregator(
            store=self.store,
            probe_timeout=health_config['probe_timeout'],
            interval=health_config['interval'],
            clock=self.clock
        )

        self.rule_engine = AlertRuleEngine.from_config(
            cm.get_alerting_config(), self.store, self.dispatcher, clock=self.clock)

        # 灾难通知可以使用独立的通道，未配置时复用告警通道
        admin_dispatcher = self.dispatcher
        if dr_config.get('notifications'):
            admin_dispatcher = NotificationDispatcher(service_name, dr_config['notifications'],
                                                      clock=self.clock)

        self.orchestrator = DisasterRecoveryOrchestrator(
            aggregator=self.aggregator,
            dispatcher=admin_dispatcher,
            backup_provider=self.backup_provider,
            supervisor=supervisor_from_config(dr_config.get('supervisor')),
            config=dr_config,
            clock=self.clock
        )

        # 自定义探针优先，默认探针不会覆盖同名探针
        self.aggregator.configure_probes(health_config.get('probes') or {})
        if health_config.get('register_default_probes', True):
            self.aggregator.register_default_probes(
                self.orchestrator.config['recovery_thresholds'])

    def _build_scheduler(self):
        metrics_config = self.config_manager.get_metrics_config()

        self.scheduler = TickScheduler()
        self.scheduler.add_task('metrics_cleanup', metrics_config['cleanup_interval'],
                                self.store.cleanup, run_immediately=False)
        if self.sampler:
            self.scheduler.add_task('system_sampling', metrics_config['sampling_interval'],
                                    self.sampler.sample_async)
        self.scheduler.register(self.aggregator.task)
        self.scheduler.register(self.rule_engine.task)
        if self.orchestrator.enabled:
            self.scheduler.register(self.orchestrator.task)

    async def start(self):
        """启动应用程序并等待关闭信号"""
        if self.is_running:
            self.logger.warning("应用程序已经在运行")
            return

        try:
            self.is_running = True
            self.logger.info("启动运维监控系统")
            await self.scheduler.start_all()
            self.logger.info("运维监控系统启动完成")

            await self.shutdown_event.wait()

        except Exception as e:
            self.logger.error(f"应用程序运行异常: {e}", exc_info=True)
            raise
        finally:
            await self.stop()

    async def stop(self):
        """停止应用程序，等待各定时任务正在执行的 tick 完成"""
        if not self.is_running:
            return

        self.logger.info("正在停止运维监控系统...")
        self.is_running = False

        if self.scheduler:
            await self.scheduler.stop_all()
        if self.aggregator:
            self.aggregator.shutdown()

        self.logger.info("运维监控系统已停止")
        log_manager.cleanup()

    def shutdown(self):
        """触发应用程序关闭"""
        if self.logger:
            self.logger.info("收到关闭信号")
        self.shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        """获取应用程序状态

        Returns:
            应用程序状态信息
        """
        status = {
            'is_running': self.is_running,
            'config_path': self.config_path
        }

        if self.scheduler:
            status['scheduler_stats'] = self.scheduler.get_scheduler_stats()
        if self.store:
            status['metrics_stats'] = self.store.get_stats()
        if self.aggregator:
            last = self.aggregator.last_result()
            status['health'] = last.to_dict() if last else None
        if self.rule_engine:
            status['alert_stats'] = self.rule_engine.get_stats()
        if self.dispatcher:
            status['dispatcher_stats'] = self.dispatcher.get_stats()
        if self.orchestrator:
            status['recovery_status'] = self.orchestrator.get_recovery_status()

        return status

    def install_signal_handlers(self):
        """SIGINT/SIGTERM 触发优雅关闭"""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._on_signal, sig)

    def _on_signal(self, sig: signal.Signals):
        print(f"\n收到信号 {sig.name}，正在关闭...")
        self.shutdown()


USAGE_EXAMPLES = """
用法示例:
  %(prog)s config.yaml                 按配置文件启动持续监控
  %(prog)s config.yaml --validate      只校验配置文件
  %(prog)s config.yaml --check-once    运行一轮健康检查并打印结果
  %(prog)s config.yaml --test-alerts   向每个通知通道发送一条测试告警

通知通道类型: webhook, slack, discord, email
完整配置项见 config/example.yaml
"""


def create_argument_parser() -> argparse.ArgumentParser:
    """创建命令行参数解析器"""
    parser = argparse.ArgumentParser(
        prog='ops-monitor',
        description='运维监控系统: 指标采集、健康聚合、阈值告警与灾难恢复',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=USAGE_EXAMPLES
    )
    parser.add_argument('config_file', nargs='?',
                        help='YAML 配置文件，不指定则全部使用默认值')
    parser.add_argument('--version', '-v', action='version',
                        version=f'%(prog)s {__version__}')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='日志级别，优先于配置文件中的 log_level')

    modes = parser.add_mutually_exclusive_group()
    modes.add_argument('--validate', action='store_true', help='校验配置后退出')
    modes.add_argument('--check-once', action='store_true', help='运行一轮健康检查后退出')
    modes.add_argument('--test-alerts', action='store_true', help='发送测试告警后退出')

    return parser


def _describe(config_path: Optional[str]) -> str:
    return config_path or '(默认配置)'


def validate_config_file(config_path: Optional[str]) -> bool:
    """加载并校验配置文件，打印摘要

    Returns:
        验证是否成功
    """
    print(f"校验配置: {_describe(config_path)}")
    try:
        manager = ConfigManager(config_path)
        manager.load_config()
    except OpsMonitorError as e:
        print(f"❌ 配置文件验证失败: {e.format_error()}")
        return False

    rules = manager.get_alerting_config().get('rules', [])
    channels = manager.get_channels_config()
    probes = manager.get_health_config().get('probes') or {}

    print("✅ 配置文件验证成功")
    print(f"   规则条目 {len(rules)} 个，自定义探针 {len(probes)} 个，通知通道 {len(channels)} 个")
    for channel in channels:
        print(f"     - {channel.get('name')} [{channel.get('type')}]")
    return True


async def run_alert_test(config_path: Optional[str], log_level: Optional[str] = None) -> bool:
    """向所有通知通道发送测试告警

    Returns:
        是否至少有一个通道发送成功
    """
    print(f"测试通知通道: {_describe(config_path)}")
    test_app = OpsMonitorApp(config_path)
    try:
        await test_app.initialize(log_level)
        report = await test_app.dispatcher.test_channels()
    except OpsMonitorError as e:
        print(f"❌ 通知通道测试失败: {e.format_error()}")
        return False
    finally:
        if test_app.aggregator:
            test_app.aggregator.shutdown()

    for result in report.results:
        outcome = '✅' if result.success else f'❌ {result.error}'
        print(f"   {result.channel} [{result.channel_type}] {outcome}")
    print(f"成功 {len(report.succeeded)}/{report.attempted}")
    return report.any_succeeded


async def check_once(config_path: Optional[str], log_level: Optional[str] = None) -> bool:
    """运行一轮健康检查

    Returns:
        系统是否健康
    """
    print(f"健康检查: {_describe(config_path)}")
    check_app = OpsMonitorApp(config_path)
    try:
        await check_app.initialize(log_level)
        health = await check_app.aggregator.check()
    except OpsMonitorError as e:
        print(f"❌ 健康检查失败: {e.format_error()}")
        return False
    finally:
        if check_app.aggregator:
            check_app.aggregator.shutdown()

    print(f"系统状态 {health.status.value}，分数 {health.score}")
    for name, component in health.components.items():
        line = f"   {name}: {component.status.value} ({component.latency:.1f}ms)"
        if component.message:
            line += f" {component.message}"
        print(line)
    return health.status is HealthStatus.HEALTHY


async def run_monitor(config_path: Optional[str], log_level: Optional[str] = None) -> int:
    """持续运行直到收到关闭信号，返回进程退出码"""
    monitor = OpsMonitorApp(config_path)
    try:
        await monitor.initialize(log_level)
        monitor.install_signal_handlers()
        print(f"运维监控系统 v{__version__} 已启动，配置: {_describe(config_path)}")
        await monitor.start()
    except ConfigError as e:
        print(f"配置错误: {e.format_error()}", file=sys.stderr)
        return 1
    except OpsMonitorError as e:
        print(f"运行失败: {e.format_error()}", file=sys.stderr)
        return 1
    finally:
        await monitor.stop()
    return 0


async def main() -> int:
    args = create_argument_parser().parse_args()

    if args.validate:
        return 0 if validate_config_file(args.config_file) else 1
    if args.test_alerts:
        return 0 if await run_alert_test(args.config_file, args.log_level) else 1
    if args.check_once:
        return 0 if await check_once(args.config_file, args.log_level) else 1
    return await run_monitor(args.config_file, args.log_level)


def cli():
    """命令行入口"""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\n已中断")
        sys.exit(130)


if __name__ == "__main__":
    cli()
