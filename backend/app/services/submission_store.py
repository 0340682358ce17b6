from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from postgrest.exceptions import APIError

from app.lib.api_client import supabase_admin

logger = logging.getLogger("manuscripts.store")

UNIQUE_VIOLATION = "23505"


class DuplicateKeyError(Exception):
    """唯一约束冲突（PostgreSQL 23505）。"""

    def __init__(self, table: str, message: str):
        super().__init__(message)
        self.table = table
        self.message = message


def is_unique_violation(error: Exception) -> bool:
    # supabase/postgrest 的 APIError 在不同版本里字段不完全一致，这里尽量从字符串中兜底解析。
    code = str(getattr(error, "code", "") or "")
    if code == UNIQUE_VIOLATION:
        return True
    text = str(error).lower()
    return UNIQUE_VIOLATION in text or "duplicate key" in text


def _rows(resp: Any) -> list[dict[str, Any]]:
    return getattr(resp, "data", None) or []


def _first(resp: Any) -> Optional[dict[str, Any]]:
    rows = _rows(resp)
    return rows[0] if rows else None


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SubmissionStore:
    """
    持久化网关：封装 supabase(PostgREST) 的表读写。

    中文注释:
    1) 所有状态字段的写入都是“条件更新”：`.eq("status", expected)`；返回 0 行即表示前置条件已被并发修改。
    2) 唯一约束冲突统一抛 DuplicateKeyError，由服务层映射为 DuplicateAssignment / Conflict。
    3) 其它存储异常（网络、权限、缺表）原样抛出，不在这里吞掉。
    """

    def __init__(self, client: Any = None) -> None:
        self.client = client if client is not None else supabase_admin

    # === 通用读写 ===

    def _fetch_one(self, table: str, **filters: Any) -> Optional[dict[str, Any]]:
        query = self.client.table(table).select("*")
        for col, value in filters.items():
            query = query.eq(col, value)
        return _first(query.limit(1).execute())

    def _fetch_all(
        self,
        table: str,
        *,
        order_by: Optional[str] = "created_at",
        desc: bool = False,
        **filters: Any,
    ) -> list[dict[str, Any]]:
        query = self.client.table(table).select("*")
        for col, value in filters.items():
            query = query.eq(col, value)
        if order_by:
            query = query.order(order_by, desc=desc)
        return _rows(query.execute())

    def _insert(self, table: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = self.client.table(table).insert(payload).execute()
        except APIError as e:
            if is_unique_violation(e):
                raise DuplicateKeyError(table, str(getattr(e, "message", None) or e)) from e
            raise
        row = _first(resp)
        if row is None:
            raise RuntimeError(f"insert into {table} returned no rows")
        return row

    def _update(
        self,
        table: str,
        row_id: str,
        payload: dict[str, Any],
        *,
        expect: Optional[dict[str, Any]] = None,
        expect_null: Iterable[str] = (),
    ) -> Optional[dict[str, Any]]:
        query = self.client.table(table).update(payload).eq("id", row_id)
        for col, value in (expect or {}).items():
            query = query.eq(col, value)
        for col in expect_null:
            query = query.is_(col, "null")
        try:
            resp = query.execute()
        except APIError as e:
            if is_unique_violation(e):
                raise DuplicateKeyError(table, str(getattr(e, "message", None) or e)) from e
            raise
        return _first(resp)

    def _delete(self, table: str, row_id: str, *, expect: Optional[dict[str, Any]] = None) -> bool:
        query = self.client.table(table).delete().eq("id", row_id)
        for col, value in (expect or {}).items():
            query = query.eq(col, value)
        return bool(_rows(query.execute()))

    # === submissions ===

    def get_submission(self, submission_id: str) -> Optional[dict[str, Any]]:
        return self._fetch_one("submissions", id=submission_id)

    def insert_submission(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert("submissions", payload)

    def update_submission_if_status(
        self,
        submission_id: str,
        expected_status: str,
        payload: dict[str, Any],
        *,
        require_no_doi: bool = False,
    ) -> Optional[dict[str, Any]]:
        return self._update(
            "submissions",
            submission_id,
            payload,
            expect={"status": expected_status},
            expect_null=("doi",) if require_no_doi else (),
        )

    def set_doi_if_missing(
        self, submission_id: str, expected_status: str, doi: str
    ) -> Optional[dict[str, Any]]:
        return self._update(
            "submissions",
            submission_id,
            {"doi": doi, "updated_at": utc_now()},
            expect={"status": expected_status},
            expect_null=("doi",),
        )

    def list_co_authors(self, submission_id: str) -> list[dict[str, Any]]:
        return self._fetch_all("co_authors", order_by="author_order", submission_id=submission_id)

    def insert_co_author(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert("co_authors", payload)

    def list_submission_files(self, submission_id: str) -> list[dict[str, Any]]:
        return self._fetch_all("submission_files", submission_id=submission_id)

    def insert_submission_file(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert("submission_files", payload)

    # === editor_assignments ===

    def list_editor_assignments(self, submission_id: str) -> list[dict[str, Any]]:
        return self._fetch_all("editor_assignments", order_by="assigned_at", submission_id=submission_id)

    def insert_editor_assignment(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert("editor_assignments", payload)

    def update_editor_assignment(self, assignment_id: str, payload: dict[str, Any]) -> Optional[dict[str, Any]]:
        return self._update("editor_assignments", assignment_id, payload)

    # === reviews / invitations ===

    def get_review(self, review_id: str) -> Optional[dict[str, Any]]:
        return self._fetch_one("reviews", id=review_id)

    def find_review(self, submission_id: str, reviewer_id: str) -> Optional[dict[str, Any]]:
        return self._fetch_one("reviews", submission_id=submission_id, reviewer_id=reviewer_id)

    def list_reviews(self, submission_id: str) -> list[dict[str, Any]]:
        return self._fetch_all("reviews", order_by="assigned_at", submission_id=submission_id)

    def insert_review(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert("reviews", payload)

    def update_review_if_status(
        self, review_id: str, expected_status: str, payload: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        return self._update("reviews", review_id, payload, expect={"status": expected_status})

    def update_review_if(
        self, review_id: str, expect: dict[str, Any], payload: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        return self._update("reviews", review_id, payload, expect=expect)

    def delete_review_if_status(self, review_id: str, expected_status: str) -> bool:
        return self._delete("reviews", review_id, expect={"status": expected_status})

    def delete_review(self, review_id: str) -> bool:
        return self._delete("reviews", review_id)

    def list_overdue_reviews(self, now_iso: str, statuses: Iterable[str]) -> list[dict[str, Any]]:
        resp = (
            self.client.table("reviews")
            .select("*")
            .in_("status", list(statuses))
            .lt("due_date", now_iso)
            .order("due_date", desc=False)
            .execute()
        )
        return _rows(resp)

    def get_invitation_for_review(self, review_id: str) -> Optional[dict[str, Any]]:
        return self._fetch_one("reviewer_invitations", review_id=review_id)

    def insert_invitation(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert("reviewer_invitations", payload)

    def update_invitation_if_status(
        self, invitation_id: str, expected_status: str, payload: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        return self._update("reviewer_invitations", invitation_id, payload, expect={"status": expected_status})

    def delete_invitation(self, invitation_id: str) -> bool:
        return self._delete("reviewer_invitations", invitation_id)

    # === revisions ===

    def list_revisions(self, submission_id: str) -> list[dict[str, Any]]:
        return self._fetch_all("revisions", order_by="revision_number", submission_id=submission_id)

    def get_revision(self, revision_id: str) -> Optional[dict[str, Any]]:
        return self._fetch_one("revisions", id=revision_id)

    def insert_revision(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert("revisions", payload)

    def delete_revision(self, revision_id: str) -> bool:
        return self._delete("revisions", revision_id)

    def list_revision_files(self, revision_id: str) -> list[dict[str, Any]]:
        return self._fetch_all("revision_files", revision_id=revision_id)

    def insert_revision_file(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert("revision_files", payload)

    # === payments ===

    def get_payment(self, payment_id: str) -> Optional[dict[str, Any]]:
        return self._fetch_one("payments", id=payment_id)

    def list_payments(self, submission_id: str) -> list[dict[str, Any]]:
        return self._fetch_all("payments", submission_id=submission_id)

    def insert_payment(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert("payments", payload)

    def update_payment_if_status(
        self, payment_id: str, expected_status: str, payload: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        return self._update("payments", payment_id, payload, expect={"status": expected_status})

    def delete_payment(self, payment_id: str) -> bool:
        return self._delete("payments", payment_id)

    # === timeline ===

    def insert_timeline_event(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._insert("submission_timeline", payload)

    def list_timeline_events(self, submission_id: str) -> list[dict[str, Any]]:
        return self._fetch_all("submission_timeline", submission_id=submission_id)

    # === profiles / issues ===

    def get_profile(self, user_id: str) -> Optional[dict[str, Any]]:
        if not user_id:
            return None
        return self._fetch_one("user_profiles", id=user_id)

    def list_active_profiles(self) -> list[dict[str, Any]]:
        return self._fetch_all("user_profiles", order_by="full_name", is_active=True)

    def get_issue(self, issue_id: str) -> Optional[dict[str, Any]]:
        return self._fetch_one("issues", id=issue_id)
