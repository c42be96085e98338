"""数据模型 -- EmailContent + PushPayload + PushResult"""

import json

from pydantic import BaseModel, Field


class EmailContent(BaseModel):
    """模板渲染结果"""

    subject: str = Field(description="邮件主题")
    html: str = Field(description="HTML 正文")


class PushPayload(BaseModel):
    """Web Push 消息体，由 Service Worker 解析展示"""

    title: str
    body: str
    tag: str = Field(description="同 tag 的推送在客户端会相互替换")
    url: str = Field(description="点击后打开的地址")

    def to_json(self) -> str:
        return json.dumps(
            {
                "title": self.title,
                "body": self.body,
                "tag": self.tag,
                "data": {"url": self.url},
            },
            ensure_ascii=False,
        )


class PushResult(BaseModel):
    """单条通知的推送结果"""

    delivered: int = Field(default=0, ge=0, description="成功送达的订阅数")
    failed: int = Field(default=0, ge=0, description="失败的订阅数")
    gone_endpoints: list[str] = Field(
        default_factory=list,
        description="返回 404/410 的 endpoint，应停用",
    )

    @property
    def ok(self) -> bool:
        return self.delivered > 0
