import pytest
from fastapi import HTTPException

from app.core import roles as roles_mod
from app.core.security import require_admin_key
from app.models.workflow import Actor


@pytest.mark.asyncio
async def test_profile_without_row_defaults_to_author(store):
    profile = await roles_mod.get_current_profile({"id": "newcomer", "email": "new@example.com"}, store)

    assert profile == {"id": "newcomer", "email": "new@example.com", "roles": ["author"]}


@pytest.mark.asyncio
async def test_existing_profile_is_returned(store, people):
    profile = await roles_mod.get_current_profile({"id": people.editor.id, "email": None}, store)
    actor = await roles_mod.get_current_actor(profile)

    assert actor.id == "editor-1"
    assert actor.has_any_role(["editor"])
    assert actor.name == "Eve Editor"


@pytest.mark.asyncio
async def test_inactive_profile_forbidden(store, fake_db):
    fake_db.seed("user_profiles", {"id": "gone-1", "email": "gone@example.com", "roles": ["editor"], "is_active": False})

    with pytest.raises(HTTPException) as exc:
        await roles_mod.get_current_profile({"id": "gone-1"}, store)

    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_require_any_role():
    dep = roles_mod.require_any_role(["admin"])

    admin = Actor(id="a", roles=frozenset({"admin"}))
    assert await dep(admin) is admin

    with pytest.raises(HTTPException) as exc:
        await dep(Actor(id="e", roles=frozenset({"editor"})))
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_require_admin_key(monkeypatch):
    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    with pytest.raises(HTTPException) as exc:
        await require_admin_key("anything")
    assert exc.value.status_code == 401

    monkeypatch.setenv("ADMIN_API_KEY", "cron-key")
    with pytest.raises(HTTPException):
        await require_admin_key("wrong")
    assert await require_admin_key("cron-key") is None


def test_actor_from_profile_normalizes_roles():
    actor = Actor.from_profile({"id": "u1", "roles": [" Editor ", None, "REVIEWER"], "email": "u1@example.com"})

    assert actor.roles == frozenset({"editor", "reviewer"})
    assert actor.display_name == "u1@example.com"
    assert Actor.system().is_admin
