"""SmtpEmailSender -- SMTP 邮件通道

smtplib 为阻塞调用，放入工作线程执行，并以超时约束整个发送过程。
send() 从不抛出：失败时记录 DeliveryError 日志并返回 False。
"""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

import structlog

from .config import DeliveryConfig
from .exceptions import DeliveryError, EmailDeliveryError

log = structlog.get_logger()


class SmtpEmailSender:
    """基于 STARTTLS + 登录的 SMTP 发送器"""

    def __init__(self, config: DeliveryConfig) -> None:
        self._config = config

    async def send(self, to: str, subject: str, html: str) -> bool:
        """发送 HTML 邮件

        Args:
            to: 收件地址
            subject: 主题
            html: HTML 正文

        Returns:
            True 如果 SMTP 服务器接受了邮件
        """
        try:
            await self._send(to, subject, html)
        except DeliveryError as e:
            log.warning("delivery_email_failed", to=to, subject=subject, error=str(e))
            return False
        log.info("delivery_email_sent", to=to, subject=subject)
        return True

    async def _send(self, to: str, subject: str, html: str) -> None:
        msg = self._build_message(to, subject, html)
        timeout = self._config.timeout_s
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._smtp_send_sync, msg, to),
                timeout=timeout,
            )
        except TimeoutError as e:
            raise EmailDeliveryError(to, TimeoutError(f"SMTP 超时 ({timeout}s)")) from e
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(to, e) from e

    def _build_message(self, to: str, subject: str, html: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self._config.sender_name, self._config.from_address))
        msg["To"] = to
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def _smtp_send_sync(self, msg: MIMEMultipart, to: str) -> None:
        """同步 SMTP 发送（在工作线程中执行）"""
        config = self._config
        with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=config.timeout_s) as server:
            server.starttls()
            password = config.smtp_password.get_secret_value()
            if config.smtp_user and password:
                server.login(config.smtp_user, password)
            server.send_message(msg, to_addrs=[to])
