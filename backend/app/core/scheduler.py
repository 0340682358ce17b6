from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from app.core.config import WorkflowConfig
from app.models.workflow import Actor
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.reviewer_service import ReviewerService

logger = logging.getLogger("manuscripts.scheduler")


class ReviewReminderJob:
    """
    逾期审稿自动催办

    中文注释:
    1) 触发方式：通过内部接口 /api/v1/internal/cron/review-reminders 手动/定时触发。
    2) 只调用 ReviewerService.send_review_reminder（与编辑手动催办同一路径），绝不修改投稿/审稿状态。
    3) reminders_sent 达到 REVIEW_REMINDER_MAX 后不再催办，剩余的交给编辑人工处理（延期或撤换审稿人）。
    """

    def __init__(
        self,
        reviewers: Optional[ReviewerService] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        config: Optional[WorkflowConfig] = None,
    ):
        self.config = config or WorkflowConfig.from_env()
        self.reviewers = reviewers or ReviewerService(config=self.config)
        self.dispatcher = dispatcher or NotificationDispatcher(self.reviewers.store, config=self.config)

    def run(self, now: Optional[datetime] = None) -> Dict[str, int]:
        actor = Actor.system()
        moment = now or datetime.now(timezone.utc)

        overdue = self.reviewers.get_overdue_reviews(actor, now=moment)
        if not overdue.success:
            logger.warning("[ReviewReminder] overdue query rejected: %s", overdue.error.message if overdue.error else "")
            return {"processed_count": 0, "reminders_sent": 0, "skipped": 0}

        processed = 0
        sent = 0
        skipped = 0
        for review in overdue.data or []:
            processed += 1
            if int(review.get("reminders_sent") or 0) >= self.config.review_reminder_max:
                skipped += 1
                continue
            result = self.reviewers.send_review_reminder(str(review["id"]), actor)
            if not result.success:
                skipped += 1
                logger.info(
                    "[ReviewReminder] review %s skipped: %s",
                    review.get("id"),
                    result.error.message if result.error else "",
                )
                continue
            self.dispatcher.dispatch(result.effects)
            sent += 1

        return {"processed_count": processed, "reminders_sent": sent, "skipped": skipped}
