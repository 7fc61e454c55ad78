"""Webhook告警器实现"""

import asyncio
from typing import Dict, Any, Optional

import aiohttp

from .base import BaseAlerter, NotificationPayload
from ..models.channel import AlertChannel
from ..utils.exceptions import DeliveryError


class HttpJsonAlerter(BaseAlerter):
    """通过 HTTP 发送 JSON 的告警器基类，失败不重试"""

    async def _post_json(self, url: str, body: Dict[str, Any],
                         headers: Optional[Dict[str, str]] = None,
                         method: str = 'POST', alert_id: Optional[str] = None) -> None:
        """
        发送 JSON 请求

        Args:
            url: 目标地址
            body: JSON 请求体
            headers: 附加请求头
            method: HTTP 方法
            alert_id: 告警ID，用于错误上下文

        Raises:
            DeliveryError: 网络错误、超时或非 2xx 响应
        """
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())
        context = {'alert_id': alert_id} if alert_id else {}

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method=method, url=url, json=body,
                                           headers=headers or {}) as response:
                    if 200 <= response.status < 300:
                        self.logger.debug(f"{self.name} 发送成功 (状态码: {response.status})")
                        return

                    response_text = await response.text()
                    self.logger.warning(
                        f"{self.name} 收到错误响应 "
                        f"(状态码: {response.status}, 响应: {response_text[:200]})"
                    )
                    raise DeliveryError(f"HTTP状态码异常: {response.status}",
                                        channel=self.name, channel_type=self.alerter_type,
                                        context=dict(context, status=response.status))

        except aiohttp.ClientError as e:
            raise DeliveryError(f"HTTP请求失败: {e}", channel=self.name,
                                channel_type=self.alerter_type, context=context, cause=e)
        except asyncio.TimeoutError as e:
            raise DeliveryError("HTTP请求超时", channel=self.name,
                                channel_type=self.alerter_type, context=context, cause=e)


class WebhookAlerter(HttpJsonAlerter):
    """通用 webhook 告警器，请求体为 {alert, timestamp, service_name, event}"""

    def __init__(self, channel: AlertChannel):
        super().__init__(channel)
        self.url = self.config.url
        self.method = self.config.method.upper()
        self.headers = dict(self.config.headers)

    async def deliver(self, payload: NotificationPayload) -> None:
        self.logger.info(
            f"发送webhook告警: 规则={payload.alert.rule_name}, 级别={payload.alert.severity.value}")
        await self._post_json(self.url, payload.to_dict(), self.headers, self.method,
                              alert_id=payload.alert.id)

    def get_config_summary(self) -> Dict[str, Any]:
        summary = super().get_config_summary()
        summary.update({
            'url': self.url,
            'method': self.method,
            'headers_count': len(self.headers)
        })
        return summary
