"""邮件模板 -- 通知类型 -> EmailContent(subject, html)

全部为纯函数：输入通知、接收人、关联任务，输出主题与 HTML，无副作用。
所有插入 HTML 的用户数据都经过转义。
"""

from collections.abc import Callable
from html import escape

from dgworkos.core.models import Notification, NotificationType, Task, User

from .models import EmailContent

_ACCENT = "#d4af37"
_DANGER = "#dc2626"
_SUCCESS = "#059669"

_HEADER = (
    '<div style="background:#0a1628;padding:20px;text-align:center;'
    f'border-bottom:3px solid {_ACCENT};">'
    f'<h1 style="color:{_ACCENT};margin:0;font-size:20px;">DG Work OS</h1>'
    '<p style="color:#cbd5e1;margin:4px 0 0;font-size:12px;">'
    "Ministry of Public Utilities &amp; Aviation</p></div>"
)

_FOOTER = (
    '<div style="background:#0a1628;padding:16px;text-align:center;">'
    '<p style="color:#64748b;margin:0;font-size:11px;">'
    "This is an automated message from DG Work OS. "
    "You can manage notifications from your dashboard.</p></div>"
)


def task_url(base_url: str, task_id: str, for_decider: bool = False) -> str:
    """任务详情链接；审批人进入管理端页面"""
    section = "admin" if for_decider else "dashboard"
    return f"{base_url.rstrip('/')}/{section}/tasks/{task_id}"


def notifications_url(base_url: str) -> str:
    return f"{base_url.rstrip('/')}/dashboard/notifications"


def _wrap(body: str) -> str:
    return (
        '<div style="font-family:-apple-system,Segoe UI,Roboto,sans-serif;max-width:600px;'
        'margin:0 auto;border:1px solid #2d3a52;border-radius:8px;overflow:hidden;">'
        f'{_HEADER}<div style="padding:24px;background:#f8fafc;">{body}</div>{_FOOTER}</div>'
    )


def _greeting(recipient: User) -> str:
    return f'<h2 style="color:#1e293b;margin-top:0;">Hello {escape(recipient.full_name)},</h2>'


def _paragraph(text: str) -> str:
    return f'<p style="color:#475569;">{escape(text)}</p>'


def _callout(text: str, color: str) -> str:
    return (
        f'<div style="border-left:4px solid {color};background:#fff;padding:12px;margin:12px 0;">'
        f'<p style="margin:0;color:#1e293b;">{escape(text)}</p></div>'
    )


def _button(label: str, href: str, color: str = _ACCENT) -> str:
    return (
        f'<a href="{escape(href, quote=True)}" style="display:inline-block;background:{color};'
        "color:#0a1628;padding:10px 24px;border-radius:6px;text-decoration:none;"
        f'font-weight:600;margin-top:8px;">{escape(label)}</a>'
    )


def task_card(task: Task) -> str:
    """任务摘要卡片"""
    rows = [("Due", task.due_date.isoformat()), ("Priority", task.priority.value)]
    if task.agency:
        rows.insert(0, ("Agency", task.agency.upper()))
    cells = "".join(
        f'<tr><td style="padding:4px 0;width:80px;">{label}</td>'
        f'<td style="font-weight:600;">{escape(value)}</td></tr>'
        for label, value in rows
    )
    return (
        '<div style="background:#fff;border:1px solid #e2e8f0;border-radius:8px;'
        'padding:16px;margin:16px 0;">'
        f'<h3 style="margin:0 0 8px;color:#1e293b;">{escape(task.title)}</h3>'
        f'<table style="width:100%;font-size:13px;color:#475569;">{cells}</table></div>'
    )


def _task_email(
    subject: str,
    intro: str,
    recipient: User,
    task: Task | None,
    base_url: str,
    button: str,
    color: str = _ACCENT,
    callout: str | None = None,
) -> EmailContent:
    parts = [_greeting(recipient), _paragraph(intro)]
    if callout:
        parts.append(_callout(callout, color))
    if task is not None:
        parts.append(task_card(task))
        href = task_url(base_url, task.task_id, recipient.is_decider)
    else:
        href = notifications_url(base_url)
    parts.append(_button(button, href, color))
    return EmailContent(subject=subject, html=_wrap("".join(parts)))


def task_assigned_email(
    n: Notification, recipient: User, task: Task | None, base_url: str
) -> EmailContent:
    if task is None:
        # 批量派发的汇总通知没有单一关联任务
        return _task_email(n.title, n.message, recipient, None, base_url, "View My Tasks")
    return _task_email(
        f"New Task Assigned: {task.title}",
        "You have been assigned a new task:",
        recipient,
        task,
        base_url,
        "View Task",
    )


def task_overdue_email(
    n: Notification, recipient: User, task: Task | None, base_url: str
) -> EmailContent:
    title = task.title if task else n.title
    return _task_email(
        f"OVERDUE: {title}",
        n.message,
        recipient,
        task,
        base_url,
        "Take Action",
        color=_DANGER,
        callout="This task is now overdue.",
    )


def task_reminder_email(
    n: Notification, recipient: User, task: Task | None, base_url: str
) -> EmailContent:
    title = task.title if task else n.title
    return _task_email(
        f"Reminder: {title}",
        n.message,
        recipient,
        task,
        base_url,
        "View Task",
    )


def task_rejected_email(
    n: Notification, recipient: User, task: Task | None, base_url: str
) -> EmailContent:
    title = task.title if task else n.title
    reason = task.rejection_reason if task else None
    return _task_email(
        f"Task Returned: {title}",
        "The following task has been returned for revision:",
        recipient,
        task,
        base_url,
        "Resume Work",
        callout=f"Reason: {reason}" if reason else None,
    )


def task_submitted_email(
    n: Notification, recipient: User, task: Task | None, base_url: str
) -> EmailContent:
    title = task.title if task else n.title
    return _task_email(
        f"Task Submitted for Review: {title}",
        n.message,
        recipient,
        task,
        base_url,
        "Review Task",
        color=_SUCCESS,
    )


def task_verified_email(
    n: Notification, recipient: User, task: Task | None, base_url: str
) -> EmailContent:
    title = task.title if task else n.title
    return _task_email(
        f"Task Verified: {title}",
        n.message,
        recipient,
        task,
        base_url,
        "View Task",
        color=_SUCCESS,
    )


def extension_requested_email(
    n: Notification, recipient: User, task: Task | None, base_url: str
) -> EmailContent:
    title = task.title if task else n.title
    return _task_email(
        f"Extension Requested: {title}",
        n.message,
        recipient,
        task,
        base_url,
        "Review Request",
    )


def extension_decided_email(
    n: Notification, recipient: User, task: Task | None, base_url: str
) -> EmailContent:
    return _task_email(
        n.title,
        n.message,
        recipient,
        task,
        base_url,
        "View Task",
    )


def comment_added_email(
    n: Notification, recipient: User, task: Task | None, base_url: str
) -> EmailContent:
    title = task.title if task else n.title
    return _task_email(
        f"New Comment: {title}",
        "A new comment was added to your task:",
        recipient,
        task,
        base_url,
        "View Comment",
        callout=n.message,
    )


TemplateFn = Callable[[Notification, User, Task | None, str], EmailContent]

TEMPLATES: dict[NotificationType, TemplateFn] = {
    NotificationType.TASK_ASSIGNED: task_assigned_email,
    NotificationType.TASK_OVERDUE: task_overdue_email,
    NotificationType.TASK_REMINDER: task_reminder_email,
    NotificationType.TASK_REJECTED: task_rejected_email,
    NotificationType.TASK_SUBMITTED: task_submitted_email,
    NotificationType.TASK_VERIFIED: task_verified_email,
    NotificationType.EXTENSION_REQUESTED: extension_requested_email,
    NotificationType.EXTENSION_DECIDED: extension_decided_email,
    NotificationType.COMMENT_ADDED: comment_added_email,
}


def render_email(
    notification: Notification,
    recipient: User,
    task: Task | None,
    base_url: str,
) -> EmailContent | None:
    """按通知类型渲染邮件；未登记模板的类型返回 None（只走站内 + 推送）"""
    template = TEMPLATES.get(notification.type)
    if template is None:
        return None
    return template(notification, recipient, task, base_url)

