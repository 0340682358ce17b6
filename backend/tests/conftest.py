import os
import sys
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# backend/ 与 tests/utils 加入 import 路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "utils"))

from fake_supabase import FakeSupabase  # noqa: E402

from app.api.v1.common import WorkflowServices, get_services  # noqa: E402
from app.core.config import WorkflowConfig  # noqa: E402
from app.core.roles import get_current_actor  # noqa: E402
from app.models.decision import DecisionRequest, EditorialDecision  # noqa: E402
from app.models.reviews import Recommendation, ReviewSubmission  # noqa: E402
from app.models.submission import FileReference, SubmissionCreate  # noqa: E402
from app.models.workflow import Actor  # noqa: E402
from app.services.submission_store import SubmissionStore  # noqa: E402

# === 全局测试配置 ===
# 中文注释:
# 1. 单元测试全部跑在内存版 supabase 上，不依赖真实数据库。
# 2. API 测试通过 dependency_overrides 注入 actor 与服务容器。


def make_config(**overrides) -> WorkflowConfig:
    values = dict(
        apc_amount=299.0,
        apc_currency="INR",
        apc_required=True,
        doi_prefix="10.5555",
        journal_slug="jtest",
        review_due_default_days=21,
        review_reminder_max=3,
        frontend_origin="http://localhost:3000",
        feed_regenerate_url=None,
    )
    values.update(overrides)
    return WorkflowConfig(**values)


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def store(fake_db) -> SubmissionStore:
    return SubmissionStore(fake_db)


@pytest.fixture
def workflow_config() -> WorkflowConfig:
    return make_config()


@pytest.fixture
def services(store, workflow_config) -> WorkflowServices:
    return WorkflowServices.build(store, workflow_config)


def _profile(fake_db, user_id: str, roles: list, name: str, **extra) -> Actor:
    row = fake_db.seed(
        "user_profiles",
        {
            "id": user_id,
            "email": f"{user_id}@example.com",
            "full_name": name,
            "roles": roles,
            "is_active": True,
            **extra,
        },
    )
    return Actor.from_profile(row)


@pytest.fixture
def people(fake_db) -> SimpleNamespace:
    """
    预置的用户：作者 / 两位编辑 / 两位审稿人 / 管理员
    """
    return SimpleNamespace(
        author=_profile(fake_db, "author-1", ["author"], "Ada Author"),
        editor=_profile(fake_db, "editor-1", ["editor"], "Eve Editor"),
        other_editor=_profile(fake_db, "editor-2", ["editor"], "Oscar Editor"),
        reviewer=_profile(fake_db, "reviewer-1", ["reviewer"], "Rita Reviewer"),
        second_reviewer=_profile(fake_db, "reviewer-2", ["reviewer"], "Rob Reviewer"),
        admin=_profile(fake_db, "admin-1", ["admin"], "Alan Admin"),
    )


@pytest.fixture
def issue(fake_db) -> dict:
    return fake_db.seed("issues", {"volume": 3, "number": 2, "title": "Spring"})


class Flow:
    """
    把投稿推进到指定状态的测试助手（每一步都断言成功）。
    """

    def __init__(self, services: WorkflowServices, people: SimpleNamespace):
        self.services = services
        self.people = people

    @staticmethod
    def _ok(result):
        assert result.success, result.error.to_dict() if result.error else result
        return result.data

    def draft(self, **fields) -> str:
        payload = SubmissionCreate(
            title=fields.pop("title", "Deep Sea Vents"),
            abstract=fields.pop("abstract", "Hydrothermal activity."),
            **fields,
        )
        data = self._ok(self.services.submissions.create_submission(self.people.author, payload))
        return str(data["id"])

    def attach_file(self, submission_id: str) -> None:
        self._ok(
            self.services.submissions.attach_file(
                submission_id,
                self.people.author,
                FileReference(file_path=f"{submission_id}/paper.pdf", original_name="paper.pdf"),
            )
        )

    def submitted(self, **fields) -> str:
        sid = self.draft(**fields)
        self.attach_file(sid)
        self._ok(self.services.submissions.submit_for_review(sid, self.people.author))
        return sid

    def with_editor(self, submission_id: str) -> None:
        self._ok(
            self.services.submissions.assign_editor(submission_id, self.people.editor.id, self.people.admin)
        )

    def assign_reviewer(self, submission_id: str, reviewer: Actor) -> dict:
        data = self._ok(
            self.services.reviewers.assign_reviewer(submission_id, reviewer.id, self.people.editor)
        )
        return data["review"]

    def under_review(self, **fields) -> str:
        sid = self.submitted(**fields)
        self.with_editor(sid)
        self.assign_reviewer(sid, self.people.reviewer)
        return sid

    def complete_review(self, review_id: str, reviewer: Actor, recommendation=Recommendation.ACCEPT) -> None:
        self._ok(self.services.reviewers.respond_to_invitation(review_id, reviewer, True))
        self._ok(
            self.services.reviewers.submit_review(
                review_id,
                reviewer,
                ReviewSubmission(recommendation=recommendation, author_comments="Solid work."),
            )
        )

    def reviewed(self, **fields) -> str:
        sid = self.submitted(**fields)
        self.with_editor(sid)
        review = self.assign_reviewer(sid, self.people.reviewer)
        self.complete_review(str(review["id"]), self.people.reviewer)
        return sid

    def decide(self, submission_id: str, decision: EditorialDecision) -> dict:
        return self._ok(
            self.services.decisions.make_decision(
                submission_id, self.people.editor, DecisionRequest(decision=decision)
            )
        )

    def accepted(self, **fields) -> str:
        sid = self.reviewed(**fields)
        self.decide(sid, EditorialDecision.ACCEPT)
        return sid


@pytest.fixture
def flow(services, people) -> Flow:
    return Flow(services, people)


# === API 测试 ===


@pytest.fixture
def as_actor(services):
    """
    覆盖 get_current_actor / get_services，避免测试依赖真实 Supabase Auth。
    """
    from main import app

    def _set(actor: Actor) -> None:
        app.dependency_overrides[get_current_actor] = lambda: actor

    app.dependency_overrides[get_services] = lambda: services
    yield _set
    app.dependency_overrides.pop(get_current_actor, None)
    app.dependency_overrides.pop(get_services, None)


@pytest_asyncio.fixture
async def client():
    from main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac
