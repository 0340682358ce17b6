from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional


class Role(str, Enum):
    AUTHOR = "author"
    REVIEWER = "reviewer"
    EDITOR = "editor"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """
    显式的调用者身份。

    中文注释:
    - 核心服务不读取任何“当前请求”全局状态，所有鉴权都基于传入的 actor。
    - roles 来自 user_profiles.roles；未知角色会被保留但不参与判断。
    """

    id: str
    roles: frozenset[str] = frozenset()
    name: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: dict[str, Any]) -> "Actor":
        roles = frozenset(str(r).strip().lower() for r in (profile.get("roles") or []) if r)
        return cls(
            id=str(profile.get("id") or ""),
            roles=roles,
            name=profile.get("full_name") or profile.get("name"),
            email=profile.get("email"),
        )

    @classmethod
    def system(cls) -> "Actor":
        return cls(id="system", roles=frozenset({Role.ADMIN.value}), name="System")

    def has_any_role(self, roles: Iterable[str | Role]) -> bool:
        wanted = {r.value if isinstance(r, Role) else str(r) for r in roles}
        return bool(self.roles & wanted)

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN.value in self.roles

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_STATE = "invalid_state"
    CONFLICT = "conflict"
    DUPLICATE_ASSIGNMENT = "duplicate_assignment"
    INVALID_REVIEWER = "invalid_reviewer"
    DOI_ALREADY_ASSIGNED = "doi_already_assigned"
    ALREADY_PAID = "already_paid"
    MISSING_DOI = "missing_doi"
    ISSUE_NOT_FOUND = "issue_not_found"
    PAYMENT_REQUIRED = "payment_required"
    VALIDATION_ERROR = "validation_error"


class WorkflowError(Exception):
    """业务规则违反（可预期错误）。在操作边界转换为失败的 WorkflowResult。"""

    def __init__(self, kind: ErrorKind, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.kind.value, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out

    @classmethod
    def not_found(cls, entity: str, entity_id: Any = None) -> "WorkflowError":
        details = {"id": str(entity_id)} if entity_id is not None else None
        return cls(ErrorKind.NOT_FOUND, f"{entity} not found", details)

    @classmethod
    def forbidden(cls, message: str = "Not allowed to perform this action") -> "WorkflowError":
        return cls(ErrorKind.FORBIDDEN, message)

    @classmethod
    def invalid_state(cls, message: str, **details: Any) -> "WorkflowError":
        return cls(ErrorKind.INVALID_STATE, message, details or None)

    @classmethod
    def conflict(cls, message: str = "Record was modified concurrently", **details: Any) -> "WorkflowError":
        return cls(ErrorKind.CONFLICT, message, details or None)

    @classmethod
    def validation(cls, message: str, **details: Any) -> "WorkflowError":
        return cls(ErrorKind.VALIDATION_ERROR, message, details or None)


class TransitionKind(str, Enum):
    """时间线事件 / 通知事件类型"""

    SUBMISSION_CREATED = "submission_created"
    FILE_UPLOADED = "file_uploaded"
    SUBMISSION_SUBMITTED = "submission_submitted"
    EDITOR_ASSIGNED = "editor_assigned"
    SCREENING_COMPLETED = "screening_completed"
    REVIEWER_ASSIGNED = "reviewer_assigned"
    REVIEWER_REMOVED = "reviewer_removed"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_DECLINED = "invitation_declined"
    REVIEW_SUBMITTED = "review_submitted"
    REVIEW_REMINDER = "review_reminder"
    REVIEW_DEADLINE_EXTENDED = "review_deadline_extended"
    DECISION_MADE = "decision_made"
    REVISION_SUBMITTED = "revision_submitted"
    REVISION_FILE_UPLOADED = "revision_file_uploaded"
    REVISION_HANDLED = "revision_handled"
    PAYMENT_REQUESTED = "payment_requested"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REFUNDED = "payment_refunded"
    DOI_ASSIGNED = "doi_assigned"
    PUBLISHED = "published"
    WITHDRAWN = "withdrawn"
    STATUS_OVERRIDE = "status_override"


class EffectKind(str, Enum):
    NOTIFY = "notify"
    EMAIL = "email"
    REGENERATE_FEEDS = "regenerate_feeds"


@dataclass(frozen=True)
class Effect:
    """
    事务提交后才执行的副作用描述。

    中文注释:
    - recipients: user_profiles.id 列表（写站内信，若指定 template 则同时发邮件）。
    - emails: 直接邮箱地址（例如不在系统内的共同作者），只发邮件。
    - context 只放结构化字段，渲染交给通知分发器。
    """

    kind: EffectKind
    event: TransitionKind
    submission_id: Optional[str] = None
    recipients: tuple[str, ...] = ()
    emails: tuple[str, ...] = ()
    template: Optional[str] = None
    context: dict[str, Any] = field(default_factory=dict)


def notify(
    event: TransitionKind,
    submission_id: Optional[str],
    recipients: Iterable[Optional[str]],
    *,
    template: Optional[str] = None,
    **context: Any,
) -> Effect:
    ids = tuple(dict.fromkeys(str(r) for r in recipients if r))
    return Effect(
        kind=EffectKind.NOTIFY,
        event=event,
        submission_id=submission_id,
        recipients=ids,
        template=template,
        context=context,
    )


def email(
    event: TransitionKind,
    submission_id: Optional[str],
    addresses: Iterable[Optional[str]],
    *,
    template: str,
    **context: Any,
) -> Effect:
    emails = tuple(dict.fromkeys(a.strip() for a in addresses if a and a.strip()))
    return Effect(
        kind=EffectKind.EMAIL,
        event=event,
        submission_id=submission_id,
        emails=emails,
        template=template,
        context=context,
    )


@dataclass
class WorkflowResult:
    success: bool
    data: Any = None
    error: Optional[WorkflowError] = None
    effects: list[Effect] = field(default_factory=list)

    @classmethod
    def ok(cls, data: Any = None, effects: Optional[Iterable[Effect]] = None) -> "WorkflowResult":
        return cls(success=True, data=data, effects=list(effects or []))

    @classmethod
    def failure(cls, error: WorkflowError) -> "WorkflowResult":
        return cls(success=False, error=error)

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    def to_response(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        assert self.error is not None
        return {"success": False, "error": self.error.to_dict()}
