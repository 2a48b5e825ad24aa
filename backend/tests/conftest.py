import os
import tempfile
import time
from pathlib import Path

import jwt
import pytest

# Settings and the engine are built at import time, so point them at a
# throwaway database before the application is imported.
_TMP = Path(tempfile.mkdtemp(prefix="cat-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["ENV"] = "dev"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["ROLE_SERVICE"] = "local"
for _var in ("OIDC_JWKS_URL", "OIDC_ISSUER", "OIDC_AUDIENCE", "OIDC_USER_ID_CLAIM"):
    os.environ.pop(_var, None)

from fastapi.testclient import TestClient  # noqa: E402

from cat_api import database  # noqa: E402
from cat_api.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def reset_db():
    """Start every test from freshly created tables and seed data."""
    database.drop_db_and_tables()
    database.create_db_and_tables()
    yield


@pytest.fixture
def client():
    return TestClient(app)


def make_token(user_id, roles=(), expires_in=3600, **claims):
    payload = {
        "voperson_id": user_id,
        "realm_access": {"roles": list(roles)},
        "exp": int(time.time()) + expires_in,
    }
    payload.update(claims)
    return jwt.encode(payload, "test-secret", algorithm="HS256")


@pytest.fixture
def headers():
    """Return bearer headers for `user_id` holding the given token roles."""
    def _headers(user_id, roles=()):
        return {"Authorization": f"Bearer {make_token(user_id, roles)}"}
    return _headers


@pytest.fixture
def register(client, headers):
    def _register(user_id, roles=()):
        r = client.post("/v1/users/register", headers=headers(user_id, roles))
        assert r.status_code == 201, r.text
        return r.json()
    return _register


@pytest.fixture
def token():
    return make_token
