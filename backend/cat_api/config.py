"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    OIDC_JWKS_URL: str
    OIDC_ISSUER: str
    OIDC_AUDIENCE: str
    OIDC_USER_ID_CLAIM: str
    ADMIN_ROLE: str
    VALIDATED_ROLE: str
    ROLE_SERVICE: str
    KEYCLOAK_URL: str
    KEYCLOAK_REALM: str
    KEYCLOAK_CLIENT_ID: str
    KEYCLOAK_CLIENT_SECRET: str
    ROR_URL: str
    EOSC_URL: str
    RE3DATA_URL: str
    REGISTRY_TIMEOUT_SECONDS: float
    ALLOW_DEV_CORS: bool

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'cat.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.OIDC_JWKS_URL = os.getenv("OIDC_JWKS_URL", "")
        self.OIDC_ISSUER = os.getenv("OIDC_ISSUER", "")
        self.OIDC_AUDIENCE = os.getenv("OIDC_AUDIENCE", "")
        self.OIDC_USER_ID_CLAIM = os.getenv("OIDC_USER_ID_CLAIM", "voperson_id")
        self.ADMIN_ROLE = os.getenv("ADMIN_ROLE", "admin")
        self.VALIDATED_ROLE = os.getenv("VALIDATED_ROLE", "validated")
        self.ROLE_SERVICE = os.getenv("ROLE_SERVICE", "local").lower()
        self.KEYCLOAK_URL = os.getenv("KEYCLOAK_URL", "").rstrip("/")
        self.KEYCLOAK_REALM = os.getenv("KEYCLOAK_REALM", "")
        self.KEYCLOAK_CLIENT_ID = os.getenv("KEYCLOAK_CLIENT_ID", "")
        self.KEYCLOAK_CLIENT_SECRET = os.getenv("KEYCLOAK_CLIENT_SECRET", "")
        self.ROR_URL = os.getenv("ROR_URL", "https://api.ror.org/organizations")
        self.EOSC_URL = os.getenv("EOSC_URL", "https://api.eosc-portal.eu/provider")
        self.RE3DATA_URL = os.getenv("RE3DATA_URL", "https://www.re3data.org/api/v1/repository")
        self.REGISTRY_TIMEOUT_SECONDS = float(os.getenv("REGISTRY_TIMEOUT_SECONDS", "10"))
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.OIDC_JWKS_URL and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("OIDC_JWKS_URL or a non-default JWT_SECRET must be set in non-dev environments")
        if self.ROLE_SERVICE not in ("local", "keycloak"):
            raise RuntimeError(f"ROLE_SERVICE must be 'local' or 'keycloak', got {self.ROLE_SERVICE!r}")
        if self.ROLE_SERVICE == "keycloak":
            missing = [
                name for name in ("KEYCLOAK_URL", "KEYCLOAK_REALM", "KEYCLOAK_CLIENT_ID", "KEYCLOAK_CLIENT_SECRET")
                if not getattr(self, name)
            ]
            if missing:
                raise RuntimeError(f"ROLE_SERVICE=keycloak requires: {', '.join(missing)}")


settings = Settings()
