"""工作流异常体系

每个异常携带机器可读的 code 与对应的 HTTP 状态码，
由 gateway 的异常处理器统一转换为错误信封。
"""

from typing import Any


class WorkflowError(Exception):
    """工作流基础异常"""

    code: str = "WORKFLOW_ERROR"
    status_code: int = 400

    def __init__(self, message: str, **details: Any) -> None:
        """
        Args:
            message: 错误描述（返回给调用方）
            **details: 附加的结构化信息，原样放入错误信封
        """
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class ValidationError(WorkflowError):
    """输入不合法（缺字段、引用不存在的用户等），不重试"""

    code = "VALIDATION_ERROR"
    status_code = 400


class AuthError(WorkflowError):
    """未认证或权限不足"""

    code = "FORBIDDEN"
    status_code = 403

    def __init__(
        self,
        message: str,
        required_roles: list[str] | None = None,
        authenticated: bool = True,
    ) -> None:
        details: dict[str, Any] = {}
        if required_roles:
            details["required_roles"] = sorted(required_roles)
        super().__init__(message, **details)
        if not authenticated:
            self.code = "UNAUTHORIZED"
            self.status_code = 401


class InvalidTransitionError(WorkflowError):
    """状态机不允许的流转"""

    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot transition task from {current} to {requested}",
            current=current,
            requested=requested,
        )
        self.current = current
        self.requested = requested


class ConflictError(WorkflowError):
    """与当前状态冲突（重复的 pending 申请、重复决策），调用方需刷新状态"""

    code = "CONFLICT"
    status_code = 409


class NotFoundError(WorkflowError):
    """未知 ID"""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}", entity=entity, id=entity_id)
        self.entity = entity
        self.entity_id = entity_id
