#!/usr/bin/env python3
"""
监控与灾难恢复演示脚本

不依赖任何外部服务：用函数探针模拟核心服务宕机，
展示指标写入、规则告警、灾难事件和备份还原的完整流程。
"""

import asyncio
import sys
from datetime import datetime, timedelta
from pathlib import Path

# 添加项目根目录到Python路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from ops_monitor.alerts.dispatcher import NotificationDispatcher
from ops_monitor.metrics.store import MetricStore
from ops_monitor.recovery.backup import BaseBackupProvider, BackupMetadata
from ops_monitor.recovery.supervisor import LoggingProcessSupervisor
from ops_monitor.services.health_aggregator import HealthAggregator
from ops_monitor.services.recovery_orchestrator import DisasterRecoveryOrchestrator
from ops_monitor.services.rule_engine import AlertRuleEngine
from ops_monitor.utils.log_manager import configure_logging


class InMemoryBackupProvider(BaseBackupProvider):
    """演示用的备份提供者，只记录还原请求"""

    def __init__(self):
        now = datetime.now()
        self.backups = [
            BackupMetadata(id='backup-daily', timestamp=now - timedelta(hours=20)),
            BackupMetadata(id='backup-hourly', timestamp=now - timedelta(minutes=40)),
            BackupMetadata(id='backup-partial', timestamp=now - timedelta(minutes=5),
                           status='failed'),
        ]
        self.restored = []

    async def list_backups(self, filters=None):
        status = (filters or {}).get('status')
        return [b for b in self.backups if status is None or b.status == status]

    async def restore_backup(self, backup_id, overwrite=False):
        self.restored.append(backup_id)


async def demo_metrics_and_rules(store: MetricStore, engine: AlertRuleEngine):
    """演示指标写入和规则告警"""
    print("=== 指标与告警规则演示 ===")

    for value in (35.0, 62.0, 91.5):
        store.record('system.cpu.usage', value, 'percent', {'host': 'demo'})
        fired = await engine.tick()
        for alert in fired:
            print(f"触发告警: [{alert.severity.value}] {alert.message}")

    store.record('system.cpu.usage', 20.0, 'percent', {'host': 'demo'})
    await engine.tick()
    print(f"当前未解决告警数量: {len(engine.active_alerts())}")
    print(f"告警历史: {[a.rule_id for a in engine.history()]}")


async def demo_disaster_recovery(aggregator: HealthAggregator,
                                 orchestrator: DisasterRecoveryOrchestrator,
                                 backups: InMemoryBackupProvider,
                                 service_state: dict):
    """演示灾难检测和自动恢复"""
    print("\n=== 灾难恢复演示 ===")

    service_state['up'] = False
    health = await aggregator.check()
    print(f"系统状态: {health.status.value} (分数: {health.score})")

    for event in await orchestrator.run_health_check():
        print(f"灾难事件: {event.type.value} [{event.severity.value}] {event.description}")
        for action in event.recovery_actions_taken:
            print(f"  恢复动作: {action}")
    print(f"已还原的备份: {backups.restored}")

    service_state['up'] = True
    await aggregator.check()
    await orchestrator.run_health_check()

    status = orchestrator.get_recovery_status()
    print(f"事件总数: {status['events_count']}, 未解决: {status['unresolved_events']}")


async def main():
    """主函数"""
    print("运维监控系统演示")
    print("=" * 50)

    configure_logging({'log_level': 'WARNING'})

    service_state = {'up': True}
    store = MetricStore()
    dispatcher = NotificationDispatcher('demo-service')
    engine = AlertRuleEngine(store, dispatcher)
    engine.load_default_rules()

    aggregator = HealthAggregator(store=store)
    aggregator.register_probe('service_health', lambda: service_state['up'])
    aggregator.register_probe('cache', lambda: 'healthy')

    backups = InMemoryBackupProvider()
    orchestrator = DisasterRecoveryOrchestrator(
        aggregator,
        backup_provider=backups,
        supervisor=LoggingProcessSupervisor(),
        config={
            'auto_recovery': True,
            'recovery_actions': {'restart_service': True, 'restore_backup': True,
                                 'notify_admins': False}
        }
    )

    try:
        await demo_metrics_and_rules(store, engine)
        await demo_disaster_recovery(aggregator, orchestrator, backups, service_state)
    finally:
        aggregator.shutdown()

    print("\n" + "=" * 50)
    print("演示完成")


if __name__ == "__main__":
    asyncio.run(main())
