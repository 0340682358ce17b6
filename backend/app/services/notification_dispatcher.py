from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from app.core.config import WorkflowConfig
from app.core.mail import EmailService
from app.models.workflow import Effect, EffectKind, TransitionKind
from app.services.feed_client import FeedClient
from app.services.notification_service import NotificationService
from app.services.submission_store import SubmissionStore

logger = logging.getLogger("manuscripts.dispatch")


class _SafeDict(dict):
    def __missing__(self, key: str) -> str:
        return ""


# 事件 -> (标题, 正文模板)
_MESSAGES: dict[TransitionKind, tuple[str, str]] = {
    TransitionKind.SUBMISSION_SUBMITTED: ("Submission received", "“{submission_title}” has been submitted for review."),
    TransitionKind.EDITOR_ASSIGNED: ("Editor assignment", "You have been assigned to “{submission_title}”."),
    TransitionKind.SCREENING_COMPLETED: ("Initial screening completed", "“{submission_title}” is now {status}."),
    TransitionKind.REVIEWER_ASSIGNED: ("Invitation to review", "You are invited to review “{submission_title}” (due {due_date})."),
    TransitionKind.REVIEWER_REMOVED: ("Review assignment withdrawn", "Your review assignment for “{submission_title}” was withdrawn."),
    TransitionKind.INVITATION_ACCEPTED: ("Review invitation accepted", "{reviewer_name} accepted the invitation for “{submission_title}”."),
    TransitionKind.INVITATION_DECLINED: ("Review invitation declined", "{reviewer_name} declined the invitation for “{submission_title}”."),
    TransitionKind.REVIEW_SUBMITTED: ("Review submitted", "A review for “{submission_title}” has been submitted."),
    TransitionKind.REVIEW_REMINDER: ("Review reminder", "Your review of “{submission_title}” is due {due_date}."),
    TransitionKind.REVIEW_DEADLINE_EXTENDED: ("Review deadline extended", "The review of “{submission_title}” is now due {due_date}."),
    TransitionKind.DECISION_MADE: ("Editorial decision", "A decision has been made on “{submission_title}”: {decision}."),
    TransitionKind.REVISION_SUBMITTED: ("Revision submitted", "Revision {revision_number} of “{submission_title}” has been submitted."),
    TransitionKind.PAYMENT_REQUESTED: ("Payment requested", "Please pay {currency} {amount} for “{submission_title}” (invoice {invoice_number})."),
    TransitionKind.PAYMENT_RECEIVED: ("Payment received", "Payment of {currency} {amount} received for “{submission_title}”."),
    TransitionKind.PAYMENT_FAILED: ("Payment failed", "Payment of {currency} {amount} for “{submission_title}” failed."),
    TransitionKind.PAYMENT_REFUNDED: ("Payment refunded", "Payment of {currency} {amount} for “{submission_title}” was refunded."),
    TransitionKind.DOI_ASSIGNED: ("DOI assigned", "“{submission_title}” has been assigned DOI {doi}."),
    TransitionKind.PUBLISHED: ("Article published", "“{submission_title}” has been published (DOI {doi})."),
    TransitionKind.WITHDRAWN: ("Submission withdrawn", "“{submission_title}” has been withdrawn."),
    TransitionKind.STATUS_OVERRIDE: ("Submission status updated", "“{submission_title}” is now {status}."),
}


def render_message(event: TransitionKind, context: dict[str, Any]) -> tuple[str, str]:
    title, body = _MESSAGES.get(event, ("Submission update", "“{submission_title}” was updated."))
    values = _SafeDict({k: ("" if v is None else v) for k, v in context.items()})
    return title, body.format_map(values)


class NotificationDispatcher:
    """
    副作用分发器：在状态写入提交之后执行 effects。

    中文注释:
    - 任何失败（站内信、SMTP、feed webhook）只记录 warning，绝不向上抛出，也不回滚已提交的状态。
    - 通过 FastAPI BackgroundTasks 调用时运行在线程池中。
    """

    def __init__(
        self,
        store: Optional[SubmissionStore] = None,
        notifications: Optional[NotificationService] = None,
        email_service: Optional[EmailService] = None,
        feed_client: Optional[FeedClient] = None,
        config: Optional[WorkflowConfig] = None,
    ) -> None:
        self.store = store or SubmissionStore()
        self.notifications = notifications or NotificationService(self.store.client)
        self.email = email_service or EmailService()
        self.config = config or WorkflowConfig.from_env()
        self.feeds = feed_client or FeedClient(self.config)

    def dispatch(self, effects: Iterable[Effect]) -> dict[str, int]:
        delivered = 0
        failed = 0
        for effect in effects:
            try:
                self._run(effect)
                delivered += 1
            except Exception as e:
                failed += 1
                logger.warning(
                    "[Dispatch] %s/%s for %s failed (ignored): %s",
                    effect.kind.value,
                    effect.event.value,
                    effect.submission_id,
                    e,
                )
        return {"delivered": delivered, "failed": failed}

    def _link(self, submission_id: Optional[str]) -> str:
        if not submission_id:
            return f"{self.config.frontend_origin}/dashboard"
        return f"{self.config.frontend_origin}/dashboard/submissions/{submission_id}"

    def _run(self, effect: Effect) -> None:
        if effect.kind is EffectKind.REGENERATE_FEEDS:
            self.feeds.regenerate({"submission_id": effect.submission_id, **effect.context})
            return

        title, content = render_message(effect.event, effect.context)
        template_context = {**effect.context, "action_url": self._link(effect.submission_id)}

        if effect.kind is EffectKind.NOTIFY:
            for user_id in effect.recipients:
                self.notifications.create_notification(
                    user_id=user_id,
                    submission_id=effect.submission_id,
                    type=effect.event.value,
                    title=title,
                    content=content,
                )
                if effect.template:
                    self._email_user(user_id, title, effect.template, template_context)
            return

        for address in effect.emails:
            self.email.send_template_email(
                to_email=address,
                subject=title,
                template_name=effect.template or "status_update.html",
                context={**template_context, "recipient_name": address.split("@")[0]},
            )

    def _email_user(self, user_id: str, subject: str, template: str, context: dict[str, Any]) -> None:
        profile = self.store.get_profile(user_id) or {}
        address = (profile.get("email") or "").strip()
        if not address:
            logger.info("[Dispatch] no email for user %s, skip %s", user_id, template)
            return
        self.email.send_template_email(
            to_email=address,
            subject=subject,
            template_name=template,
            context={**context, "recipient_name": profile.get("full_name") or address.split("@")[0]},
        )
