from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from postgrest.exceptions import APIError

from app.lib.api_client import supabase_admin

logger = logging.getLogger("manuscripts.notifications")


class NotificationService:
    """
    通知服务：封装 notifications 表的读写（站内信）

    中文注释:
    1) 写入使用 supabase_admin（service_role），避免 RLS 导致写入失败。
    2) 通知失败不应影响主流程：create_notification 只记录日志并返回 None。
    """

    def __init__(self, client: Any = None) -> None:
        self.client = client if client is not None else supabase_admin

    @staticmethod
    def _normalize_action_url(action_url: Optional[str]) -> Optional[str]:
        raw = str(action_url or "").strip()
        if not raw:
            return None
        if raw.startswith("/"):
            return raw
        try:
            parsed = urlparse(raw)
        except ValueError:
            return None
        if parsed.scheme not in {"http", "https"}:
            return None
        path = parsed.path or "/"
        query = f"?{parsed.query}" if parsed.query else ""
        return f"{path}{query}"

    def create_notification(
        self,
        *,
        user_id: str,
        submission_id: Optional[str],
        type: str,
        title: str,
        content: str,
        action_url: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        if not action_url:
            action_url = f"/dashboard/submissions/{submission_id}" if submission_id else "/dashboard/notifications"
        payload = {
            "user_id": user_id,
            "submission_id": submission_id,
            "action_url": self._normalize_action_url(action_url) or "/dashboard/notifications",
            "type": type,
            "title": title,
            "content": content,
            "is_read": False,
        }
        try:
            res = self.client.table("notifications").insert(payload).execute()
            rows = getattr(res, "data", None) or []
            return rows[0] if rows else None
        except APIError as e:
            # 中文注释: notifications.user_id 外键指向 auth.users；展示用途的 mock 用户会触发 23503，静默忽略。
            text = str(e).lower()
            code = str(getattr(e, "code", "") or "")
            if code == "23503" or "foreign key" in text:
                return None
            logger.warning("[Notifications] create failed (ignored): %s", e)
            return None
        except Exception as e:
            logger.warning("[Notifications] create failed (ignored): %s", e)
            return None

    def list_for_user(self, user_id: str, *, limit: int = 20) -> List[Dict[str, Any]]:
        res = (
            self.client.table("notifications")
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return getattr(res, "data", None) or []
