from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException
from starlette.requests import Request

import caisse.departements.repository as repo
import caisse.departements.service as dept
import caisse.utils.security as security
from caisse.errors import ValidationError


def _request(headers=None, cookies=None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    if cookies:
        raw.append((b"cookie", "; ".join(f"{k}={v}" for k, v in cookies.items()).encode()))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


# --- département courant ---

def test_department_header_wins_over_user_metadata():
    user = {"metadata": {"department_id": "dept-user"}}
    assert dept.resolve_department_id(_request({"X-Department-Id": "dept-h"}), user) == "dept-h"
    assert dept.resolve_department_id(_request(), user) == "dept-user"


def test_department_falls_back_to_default_then_fails(monkeypatch):
    monkeypatch.setattr(dept, "DEFAULT_DEPARTMENT_ID", "dept-default")
    assert dept.resolve_department_id(_request(), {}) == "dept-default"

    monkeypatch.setattr(dept, "DEFAULT_DEPARTMENT_ID", "")
    with pytest.raises(ValidationError) as exc:
        dept.resolve_department_id(_request(), {})
    assert exc.value.code == "department_required"


def test_business_info_merges_settings_over_config(monkeypatch):
    monkeypatch.setattr(dept, "config_business_info", lambda: {"business_name": "Caisse", "business_phone": "000"})
    info = dept.get_business_info("dept-1", fetch=lambda d: {"business_name": "Boutique Dakar", "logo_url": "", "website": "x.sn"})
    assert info == {"business_name": "Boutique Dakar", "business_phone": "000", "website": "x.sn"}


def test_fetch_settings_falls_back_to_global_row(monkeypatch):
    client = MagicMock()
    client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(data=[])
    client.table.return_value.select.return_value.is_.return_value.limit.return_value.execute.return_value = MagicMock(
        data=[{"business_name": "Global"}]
    )
    monkeypatch.setattr("caisse.infra.supabase_client.get_service_supabase", lambda: client)
    assert repo.fetch_settings("dept-1") == {"business_name": "Global"}


# --- rôles et authentification ---

def test_determine_role_prefers_app_metadata():
    assert security.determine_role({"role": "admin"}, {"role": "cashier"}) == "cashier"
    assert security.determine_role({"role": "Manager"}) == "manager"
    assert security.determine_role({"role": "superuser"}) == "cashier"
    assert security.determine_role(None) == "cashier"


def test_is_privileged():
    assert security.is_privileged({"role": "admin"})
    assert security.is_privileged({"role": "manager"})
    assert not security.is_privileged({"role": "cashier"})
    assert not security.is_privileged(None)


def test_get_current_user_requires_token():
    with pytest.raises(HTTPException) as exc:
        security.get_current_user(_request())
    assert exc.value.status_code == 401


def test_get_current_user_from_bearer_or_cookie(monkeypatch):
    raw = SimpleNamespace(id="u-1", email="a@b.c", user_metadata={"full_name": "Awa", "role": "manager"}, app_metadata={})
    auth = MagicMock()
    auth.auth.get_user.return_value = SimpleNamespace(user=raw)
    monkeypatch.setattr("caisse.infra.supabase_client.get_supabase", lambda: auth)

    user = security.get_current_user(_request({"Authorization": "Bearer tok-1"}))
    assert (user["id"], user["name"], user["role"]) == ("u-1", "Awa", "manager")
    auth.auth.get_user.assert_called_with("tok-1")

    user = security.get_current_user(_request(cookies={security.COOKIE_NAME: "tok-2"}))
    assert user["token"] == "tok-2"


def test_get_current_user_invalid_token(monkeypatch):
    auth = MagicMock()
    auth.auth.get_user.side_effect = RuntimeError("expired")
    monkeypatch.setattr("caisse.infra.supabase_client.get_supabase", lambda: auth)
    with pytest.raises(HTTPException) as exc:
        security.get_current_user(_request({"Authorization": "Bearer bad"}))
    assert exc.value.status_code == 401
