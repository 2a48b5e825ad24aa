import pytest
import requests

from cat_api import services
from cat_api.config import Settings, settings

ADMIN = ["admin"]


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


@pytest.fixture
def keycloak(monkeypatch):
    monkeypatch.setattr(settings, "ROLE_SERVICE", "keycloak")
    monkeypatch.setattr(settings, "KEYCLOAK_URL", "https://idp.example.org")
    monkeypatch.setattr(settings, "KEYCLOAK_REALM", "cat")
    monkeypatch.setattr(settings, "KEYCLOAK_CLIENT_ID", "cat-api")
    monkeypatch.setattr(settings, "KEYCLOAK_CLIENT_SECRET", "s3cret")
    calls = {"post": [], "get": []}
    state = {"fail": False, "missing": False}

    def fake_post(url, data=None, json=None, headers=None, timeout=None):
        calls["post"].append((url, data, json))
        if url.endswith("/token"):
            return FakeResponse({"access_token": "admin-token"})
        if state["fail"]:
            return FakeResponse(status_code=502)
        return FakeResponse(status_code=204)

    def fake_get(url, params=None, headers=None, timeout=None):
        calls["get"].append((url, params))
        if url.endswith("/users"):
            if params.get("q") or state["missing"]:
                return FakeResponse([])
            return FakeResponse([{"id": "kc-123", "username": params["username"]}])
        return FakeResponse({"id": "role-1", "name": url.rsplit("/", 1)[-1]})

    monkeypatch.setattr(services.requests, "post", fake_post)
    monkeypatch.setattr(services.requests, "get", fake_get)
    return calls, state


def _submit(client, headers):
    body = {
        "organisation_role": "Manager",
        "organisation_id": "00tjv0s33",
        "organisation_name": "Keimyung University",
        "organisation_source": "ROR",
        "actor_id": 6,
    }
    r = client.post("/v1/validations", json=body, headers=headers("alice"))
    assert r.status_code == 201, r.text
    return r.json()["id"]


def _approve(client, headers, validation_id):
    return client.put(
        f"/v1/admin/validations/{validation_id}/update-status",
        json={"status": "APPROVED"},
        headers=headers("admin", ADMIN),
    )


def test_role_service_selection(monkeypatch):
    assert isinstance(services.role_service_for(None), services.LocalRoleService)
    monkeypatch.setattr(settings, "ROLE_SERVICE", "keycloak")
    assert isinstance(services.role_service_for(None), services.KeycloakRoleService)


def test_approval_grants_role_in_keycloak(client, headers, register, keycloak):
    calls, _ = keycloak
    register("alice")
    register("admin", roles=ADMIN)
    validation_id = _submit(client, headers)

    r = _approve(client, headers, validation_id)
    assert r.status_code == 200, r.text

    token_call, mapping_call = calls["post"]
    assert token_call[0] == "https://idp.example.org/realms/cat/protocol/openid-connect/token"
    assert token_call[1]["grant_type"] == "client_credentials"
    assert mapping_call[0] == "https://idp.example.org/admin/realms/cat/users/kc-123/role-mappings/realm"
    assert mapping_call[2] == [{"id": "role-1", "name": "validated"}]
    # lookup by the id attribute first, then by username
    assert calls["get"][0][1] == {"q": "voperson_id:alice", "exact": "true"}
    assert calls["get"][1][1] == {"username": "alice", "exact": "true"}

    profile = client.get("/v1/users/profile", headers=headers("alice")).json()
    assert profile["user_type"] == "Validated"


def test_failed_grant_keeps_request_in_review(client, headers, register, keycloak):
    _, state = keycloak
    state["fail"] = True
    register("alice")
    register("admin", roles=ADMIN)
    validation_id = _submit(client, headers)

    r = _approve(client, headers, validation_id)
    assert r.status_code == 500
    assert r.json()["message"] == "Role assignment in the identity provider failed."

    r = client.get(f"/v1/validations/{validation_id}", headers=headers("alice"))
    assert r.json()["status"] == "REVIEW"
    profile = client.get("/v1/users/profile", headers=headers("alice")).json()
    assert profile["user_type"] == "Identified"


def test_user_missing_from_identity_provider(client, headers, register, keycloak):
    calls, state = keycloak
    state["missing"] = True
    register("alice")
    register("admin", roles=ADMIN)
    validation_id = _submit(client, headers)

    r = _approve(client, headers, validation_id)
    assert r.status_code == 500
    assert r.json() == {"code": 500, "message": "Role assignment in the identity provider failed."}
    assert not any(url.endswith("/role-mappings/realm") for url, _, _ in calls["post"])

    r = client.get(f"/v1/validations/{validation_id}", headers=headers("alice"))
    assert r.json()["status"] == "REVIEW"


def test_settings_reject_unknown_role_service(monkeypatch):
    monkeypatch.setenv("ROLE_SERVICE", "ldap")
    with pytest.raises(RuntimeError):
        Settings()


def test_settings_require_keycloak_credentials(monkeypatch):
    monkeypatch.setenv("ROLE_SERVICE", "keycloak")
    monkeypatch.delenv("KEYCLOAK_URL", raising=False)
    with pytest.raises(RuntimeError, match="KEYCLOAK_URL"):
        Settings()


def test_settings_refuse_default_secret_outside_dev(monkeypatch):
    monkeypatch.setenv("ENV", "prod")
    monkeypatch.setenv("JWT_SECRET", "change_me_for_prod")
    monkeypatch.delenv("OIDC_JWKS_URL", raising=False)
    with pytest.raises(RuntimeError):
        Settings()
