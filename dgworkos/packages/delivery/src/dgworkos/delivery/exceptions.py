"""Delivery 异常体系

投递异常只在投递层内部流转：记录日志后吞掉，不会传给触发投递的请求。
"""


class DeliveryError(Exception):
    """Delivery 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可在下次 sweep 重投时恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class EmailDeliveryError(DeliveryError):
    """SMTP 发送失败（连接、认证、超时、收件人被拒等）"""

    def __init__(self, recipient: str, original_error: Exception) -> None:
        """
        Args:
            recipient: 收件地址
            original_error: 原始异常
        """
        super().__init__(
            f"邮件发送失败: {recipient} -- {type(original_error).__name__}: {original_error}",
            recoverable=True,
        )
        self.recipient = recipient
        self.original_error = original_error


class PushDeliveryError(DeliveryError):
    """Web Push 发送失败"""


class PushSubscriptionGoneError(PushDeliveryError):
    """推送服务返回 404/410，订阅已失效，应停用"""

    def __init__(self, endpoint: str, status_code: int) -> None:
        super().__init__(
            f"推送订阅已失效 ({status_code}): {endpoint}",
            recoverable=False,
        )
        self.endpoint = endpoint
        self.status_code = status_code
