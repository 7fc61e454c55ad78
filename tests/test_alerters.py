"""告警器测试"""

from datetime import datetime
from unittest.mock import Mock, AsyncMock, patch

import aiohttp
import pytest

from ops_monitor.alerts.base import NotificationPayload, EVENT_RESOLVED
from ops_monitor.alerts.chat_alerters import SlackAlerter, DiscordAlerter
from ops_monitor.alerts.email_alerter import EmailAlerter
from ops_monitor.alerts.webhook_alerter import WebhookAlerter
from ops_monitor.models.alert import Alert, Severity
from ops_monitor.models.channel import channel_from_dict
from ops_monitor.utils.exceptions import DeliveryError, ErrorKind


def _make_payload(severity=Severity.HIGH, event='fired'):
    alert = Alert(
        id='alert-1',
        rule_id='cpu-high',
        rule_name='CPU使用率过高',
        severity=severity,
        message='CPU使用率过高: system.cpu.usage=85.00 > 80',
        snapshot={'metric': 'system.cpu.usage', 'value': 85.0, 'threshold': 80.0},
        fired_at=datetime(2024, 1, 1, 12, 0, 0)
    )
    return NotificationPayload(alert=alert, service_name='test-service',
                               timestamp=datetime(2024, 1, 1, 12, 0, 5), event=event)


def _patch_session(mock_client_session, status=200, text='OK', side_effect=None):
    """配置 aiohttp.ClientSession 模拟对象，返回内部 session"""
    mock_response = Mock()
    mock_response.status = status
    mock_response.text = AsyncMock(return_value=text)

    mock_request_context = Mock()
    mock_request_context.__aenter__ = AsyncMock(return_value=mock_response)
    mock_request_context.__aexit__ = AsyncMock(return_value=None)

    mock_session = Mock()
    if side_effect is not None:
        mock_session.request = Mock(side_effect=side_effect)
    else:
        mock_session.request = Mock(return_value=mock_request_context)

    mock_client_session.return_value.__aenter__ = AsyncMock(return_value=mock_session)
    mock_client_session.return_value.__aexit__ = AsyncMock(return_value=None)
    return mock_session


class TestWebhookAlerter:
    """Webhook告警器测试类"""

    def setup_method(self):
        self.channel = channel_from_dict({
            'name': 'ops-webhook',
            'type': 'webhook',
            'url': 'https://example.com/webhook',
            'headers': {'Authorization': 'Bearer token123'},
            'timeout': 10
        })
        self.alerter = WebhookAlerter(self.channel)

    def test_init(self):
        assert self.alerter.name == 'ops-webhook'
        assert self.alerter.alerter_type == 'webhook'
        assert self.alerter.url == 'https://example.com/webhook'
        assert self.alerter.method == 'POST'

    @pytest.mark.asyncio
    async def test_deliver_success(self):
        """测试成功投递"""
        payload = _make_payload()

        with patch('aiohttp.ClientSession') as mock_client_session:
            mock_session = _patch_session(mock_client_session)

            await self.alerter.deliver(payload)

        call_kwargs = mock_session.request.call_args[1]
        assert call_kwargs['method'] == 'POST'
        assert call_kwargs['url'] == 'https://example.com/webhook'
        assert call_kwargs['headers'] == {'Authorization': 'Bearer token123'}

        body = call_kwargs['json']
        assert set(body) == {'alert', 'timestamp', 'service_name', 'event'}
        assert body['alert']['rule_id'] == 'cpu-high'
        assert body['alert']['severity'] == 'high'
        assert body['service_name'] == 'test-service'
        assert body['event'] == 'fired'

    @pytest.mark.asyncio
    async def test_deliver_http_error_status(self):
        with patch('aiohttp.ClientSession') as mock_client_session:
            _patch_session(mock_client_session, status=500, text='Internal Server Error')

            with pytest.raises(DeliveryError) as exc_info:
                await self.alerter.deliver(_make_payload())

        error = exc_info.value
        assert error.kind is ErrorKind.DELIVERY_ERROR
        assert error.context['channel'] == 'ops-webhook'
        assert error.context['status'] == 500

    @pytest.mark.asyncio
    async def test_deliver_network_error(self):
        with patch('aiohttp.ClientSession') as mock_client_session:
            _patch_session(mock_client_session,
                           side_effect=aiohttp.ClientError("Connection failed"))

            with pytest.raises(DeliveryError) as exc_info:
                await self.alerter.deliver(_make_payload())

        assert isinstance(exc_info.value.cause, aiohttp.ClientError)

    def test_get_config_summary(self):
        summary = self.alerter.get_config_summary()

        assert summary['type'] == 'webhook'
        assert summary['headers_count'] == 1
        assert summary['timeout'] == 10.0


class TestChatAlerters:
    """Slack和Discord告警器测试类"""

    def setup_method(self):
        self.slack = SlackAlerter(channel_from_dict({
            'name': 'slack', 'type': 'slack',
            'webhook_url': 'https://hooks.slack.com/services/T/B/X',
            'channel': '#ops', 'username': 'monitor'
        }))
        self.discord = DiscordAlerter(channel_from_dict({
            'name': 'discord', 'type': 'discord',
            'webhook_url': 'https://discord.com/api/webhooks/1/abc'
        }))

    def test_slack_message_color_by_severity(self):
        critical = self.slack.build_message(_make_payload(Severity.CRITICAL))
        low = self.slack.build_message(_make_payload(Severity.LOW))

        assert critical['attachments'][0]['color'] == 'danger'
        assert low['attachments'][0]['color'] == 'good'
        assert critical['channel'] == '#ops'
        assert critical['username'] == 'monitor'
        assert '[CRITICAL]' in critical['text']

    def test_slack_message_fields(self):
        message = self.slack.build_message(_make_payload())
        fields = {f['title']: f['value'] for f in message['attachments'][0]['fields']}

        assert fields['指标'] == 'system.cpu.usage'
        assert fields['阈值'] == '80.0'
        assert message['attachments'][0]['footer'] == 'test-service'

    def test_discord_embed(self):
        message = self.discord.build_message(_make_payload(Severity.HIGH))
        embed = message['embeds'][0]

        assert embed['color'] == 0xff6600
        assert embed['footer'] == {'text': 'test-service'}
        assert all(f['inline'] for f in embed['fields'])
        assert 'username' not in message

    def test_resolved_event_title(self):
        message = self.discord.build_message(_make_payload(event=EVENT_RESOLVED))

        assert message['embeds'][0]['title'].startswith('✅')
        assert message['embeds'][0]['color'] == 0x00ff00

    @pytest.mark.asyncio
    async def test_slack_deliver_posts_message(self):
        with patch('aiohttp.ClientSession') as mock_client_session:
            mock_session = _patch_session(mock_client_session)

            await self.slack.deliver(_make_payload())

        call_kwargs = mock_session.request.call_args[1]
        assert call_kwargs['url'] == 'https://hooks.slack.com/services/T/B/X'
        assert 'attachments' in call_kwargs['json']


class TestEmailAlerter:
    """邮件告警器测试类"""

    def setup_method(self):
        self.alerter = EmailAlerter(channel_from_dict({
            'name': 'oncall-mail',
            'type': 'email',
            'smtp_server': 'smtp.example.com',
            'smtp_port': 587,
            'username': 'alerts@example.com',
            'password': 'secret',
            'to': ['oncall@example.com', 'lead@example.com']
        }))

    def test_create_email_message(self):
        """测试邮件内容"""
        email_msg = self.alerter._create_email_message(_make_payload())

        assert email_msg['To'] == 'oncall@example.com, lead@example.com'
        assert 'alerts@example.com' in email_msg['From']
        assert email_msg['Subject'] == '[HIGH] CPU使用率过高 - test-service (触发)'

    @pytest.mark.asyncio
    async def test_deliver_success(self):
        with patch('ops_monitor.alerts.email_alerter.aiosmtplib.send',
                   new_callable=AsyncMock) as mock_send:
            await self.alerter.deliver(_make_payload())

        mock_send.assert_awaited_once()
        call_kwargs = mock_send.call_args[1]
        assert call_kwargs['hostname'] == 'smtp.example.com'
        assert call_kwargs['port'] == 587
        assert call_kwargs['start_tls'] is True
        assert call_kwargs['use_tls'] is False

    @pytest.mark.asyncio
    async def test_deliver_failure(self):
        with patch('ops_monitor.alerts.email_alerter.aiosmtplib.send',
                   new_callable=AsyncMock, side_effect=OSError("Connection refused")):
            with pytest.raises(DeliveryError) as exc_info:
                await self.alerter.deliver(_make_payload())

        assert exc_info.value.context['channel'] == 'oncall-mail'
        assert exc_info.value.context['alert_id'] == 'alert-1'
