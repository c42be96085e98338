"""DeliveryConfig -- 投递通道配置加载

从环境变量加载 SMTP / VAPID 配置；任一通道未配置时该通道退化为仅记录日志。
"""

import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


class DeliveryConfig(BaseModel):
    """Delivery 包配置 -- 从环境变量加载

    环境变量:
        SMTP_HOST / SMTP_PORT / SMTP_USER / SMTP_APP_PASSWORD / SMTP_FROM
        VAPID_PUBLIC_KEY / VAPID_PRIVATE_KEY / VAPID_SUBJECT
        DGWORKOS_DELIVERY_MODE: live / log（默认 live，缺少配置的通道自动退化）
        DGWORKOS_DELIVERY_TIMEOUT_S: 单次外部调用超时（秒，默认 10）
        APP_BASE_URL: 邮件与推送中的链接地址
    """

    smtp_host: str = Field(default="", description="SMTP 服务器，为空则不发邮件")
    smtp_port: int = Field(default=587, ge=1, le=65535, description="SMTP 端口")
    smtp_user: str = Field(default="", description="SMTP 登录用户")
    smtp_password: SecretStr = Field(default=SecretStr(""), description="SMTP 应用密码")
    smtp_from: str = Field(default="", description="发件地址，默认同 smtp_user")
    sender_name: str = Field(default="DG Work OS", description="发件人显示名")

    vapid_public_key: str = Field(default="", description="VAPID 公钥（提供给浏览器订阅）")
    vapid_private_key: SecretStr = Field(default=SecretStr(""), description="VAPID 私钥")
    vapid_subject: str = Field(
        default="mailto:admin@mopua.gov.gy",
        description="VAPID claims 中的 sub",
    )

    delivery_mode: Literal["live", "log"] = Field(
        default="live",
        description="live：按配置真实投递；log：所有通道只记录日志",
    )
    timeout_s: int = Field(default=10, ge=1, description="单次外部调用超时（秒）")
    base_url: str = Field(default="http://localhost:3000", description="站点地址")

    @property
    def email_enabled(self) -> bool:
        return self.delivery_mode == "live" and bool(self.smtp_host)

    @property
    def push_enabled(self) -> bool:
        return (
            self.delivery_mode == "live"
            and bool(self.vapid_public_key)
            and bool(self.vapid_private_key.get_secret_value())
        )

    @property
    def from_address(self) -> str:
        return self.smtp_from or self.smtp_user


def load_delivery_config() -> DeliveryConfig:
    """从环境变量加载 Delivery 配置

    Returns:
        DeliveryConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("SMTP_HOST"):
        kwargs["smtp_host"] = val

    if val := os.environ.get("SMTP_PORT"):
        try:
            kwargs["smtp_port"] = int(val)
        except ValueError:
            log.warning("invalid_smtp_port_config", env_var="SMTP_PORT", value=val, fallback=587)

    if val := os.environ.get("SMTP_USER"):
        kwargs["smtp_user"] = val

    if val := os.environ.get("SMTP_APP_PASSWORD"):
        kwargs["smtp_password"] = SecretStr(val)

    if val := os.environ.get("SMTP_FROM"):
        kwargs["smtp_from"] = val

    if val := os.environ.get("VAPID_PUBLIC_KEY"):
        kwargs["vapid_public_key"] = val

    if val := os.environ.get("VAPID_PRIVATE_KEY"):
        kwargs["vapid_private_key"] = SecretStr(val)

    if val := os.environ.get("VAPID_SUBJECT"):
        kwargs["vapid_subject"] = val

    if val := os.environ.get("DGWORKOS_DELIVERY_MODE"):
        kwargs["delivery_mode"] = val

    if val := os.environ.get("DGWORKOS_DELIVERY_TIMEOUT_S"):
        try:
            kwargs["timeout_s"] = int(val)
        except ValueError:
            log.warning(
                "invalid_timeout_config",
                env_var="DGWORKOS_DELIVERY_TIMEOUT_S",
                value=val,
                fallback=10,
            )
            # 使用默认值，不阻塞启动

    if val := os.environ.get("APP_BASE_URL"):
        kwargs["base_url"] = val.rstrip("/")

    return DeliveryConfig(**kwargs)
