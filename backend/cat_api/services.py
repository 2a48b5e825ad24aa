"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and enforce the permission rules of each resource. Services are
intentionally thin: they check ownership and status, persist through
repositories and raise `errors.CatError` subclasses that the API maps
onto HTTP responses.
"""

import logging
from typing import Dict, Iterable, List, Optional

import requests
from sqlmodel import Session

from . import models, repositories, schemas
from .config import settings
from .errors import BadRequestError, CatError, ConflictError, ForbiddenError, NotFoundError
from .utils import registries

logger = logging.getLogger("cat.services")

NOT_APPROVED_MESSAGE = "Validation request has not been approved."
ACTOR_MISMATCH_MESSAGE = "Actor in Validation Request mismatches actor in Template."
ROLE_ASSIGNMENT_MESSAGE = "Role assignment in the identity provider failed."


def user_type_for(roles: Iterable[str]) -> models.UserType:
    roles = set(roles)
    if settings.ADMIN_ROLE in roles:
        return models.UserType.ADMIN
    if settings.VALIDATED_ROLE in roles:
        return models.UserType.VALIDATED
    return models.UserType.IDENTIFIED


class LocalRoleService:
    """Grant roles by recording them in the `user_role` table."""
    def __init__(self, session: Session):
        self.user_repo = repositories.UserRepository(session)

    def assign_roles(self, user_id: str, roles: List[str]) -> List[str]:
        added = self.user_repo.add_roles(user_id, roles)
        if added:
            logger.info("granted roles %s to user %s", added, user_id)
        return added


class KeycloakRoleService(LocalRoleService):
    """Grant realm roles through the Keycloak admin REST API.

    The grant is mirrored locally so that it takes effect before the user
    obtains a fresh token from the identity provider.
    """
    def __init__(self, session: Session):
        super().__init__(session)
        self.base = f"{settings.KEYCLOAK_URL}/admin/realms/{settings.KEYCLOAK_REALM}"
        self.timeout = settings.REGISTRY_TIMEOUT_SECONDS

    def _admin_token(self) -> str:
        resp = requests.post(
            f"{settings.KEYCLOAK_URL}/realms/{settings.KEYCLOAK_REALM}/protocol/openid-connect/token",
            data={
                "grant_type": "client_credentials",
                "client_id": settings.KEYCLOAK_CLIENT_ID,
                "client_secret": settings.KEYCLOAK_CLIENT_SECRET,
            },
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()["access_token"]

    def _find_user(self, headers: dict, user_id: str) -> str:
        resp = requests.get(
            f"{self.base}/users",
            params={"q": f"{settings.OIDC_USER_ID_CLAIM}:{user_id}", "exact": "true"},
            headers=headers,
            timeout=self.timeout,
        )
        resp.raise_for_status()
        found = resp.json()
        if not found:
            resp = requests.get(
                f"{self.base}/users",
                params={"username": user_id, "exact": "true"},
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            found = resp.json()
        if not found:
            logger.error("user %s does not exist in the identity provider", user_id)
            raise CatError(ROLE_ASSIGNMENT_MESSAGE, 500)
        return found[0]["id"]

    def assign_roles(self, user_id: str, roles: List[str]) -> List[str]:
        try:
            headers = {"Authorization": f"Bearer {self._admin_token()}"}
            kc_user = self._find_user(headers, user_id)
            representations = []
            for role in roles:
                resp = requests.get(f"{self.base}/roles/{role}", headers=headers, timeout=self.timeout)
                resp.raise_for_status()
                representations.append(resp.json())
            resp = requests.post(
                f"{self.base}/users/{kc_user}/role-mappings/realm",
                json=representations,
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.error("keycloak role assignment for %s failed: %s", user_id, exc)
            raise CatError(ROLE_ASSIGNMENT_MESSAGE, 500) from exc
        return super().assign_roles(user_id, roles)


def role_service_for(session: Session):
    if settings.ROLE_SERVICE == "keycloak":
        return KeycloakRoleService(session)
    return LocalRoleService(session)


class UserService:
    """Registration and profile management."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, user_id: str, roles: Iterable[str] = ()) -> models.User:
        """Register the authenticated identity; 409 if already registered."""
        if self.user_repo.get(user_id):
            raise ConflictError("User already exists in the database.")
        user = self.user_repo.create(models.User(id=user_id, user_type=user_type_for(roles)))
        logger.info("registered user %s", user_id)
        return user

    def get(self, user_id: str) -> models.User:
        user = self.user_repo.get(user_id)
        if not user:
            raise NotFoundError.for_entity("User", user_id)
        return user

    def update_profile(self, user_id: str, payload: schemas.UpdateUserProfile) -> models.User:
        user = self.get(user_id)
        return self.user_repo.update_metadata(
            user,
            name=payload.name.strip(),
            surname=payload.surname.strip(),
            email=payload.email.strip(),
            orcid_id=payload.orcid_id.strip() if payload.orcid_id else None,
        )

    def list_users(self, page: int, size: int) -> repositories.Page:
        return self.user_repo.fetch_page(page, size)

    def sync_user_type(self, user: models.User, roles: Iterable[str]) -> models.User:
        """Store the type implied by the caller's effective roles."""
        user_type = user_type_for(roles)
        if models.UserType(user.user_type) != user_type:
            user = self.user_repo.set_user_type(user, user_type)
        return user

    def promote(self, user_id: str) -> models.User:
        user = self.get(user_id)
        if models.UserType(user.user_type) == models.UserType.IDENTIFIED:
            user = self.user_repo.set_user_type(user, models.UserType.VALIDATED)
        return user


class ValidationService:
    """Promotion requests and their review workflow.

    Status moves from REVIEW to APPROVED or REJECTED exactly once.
    Approval grants the requester the validated role.
    """
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ValidationRepository(session)
        self.actor_repo = repositories.ActorRepository(session)

    def _actor(self, actor_id: int) -> models.Actor:
        actor = self.actor_repo.get(actor_id)
        if not actor:
            raise NotFoundError.for_entity("Actor", actor_id)
        return actor

    def get(self, validation_id: int) -> models.Validation:
        validation = self.repo.get(validation_id)
        if not validation:
            raise NotFoundError.for_entity("Validation", validation_id)
        return validation

    def get_for_user(self, user_id: str, validation_id: int) -> models.Validation:
        validation = self.get(validation_id)
        if validation.user_id != user_id:
            raise ForbiddenError()
        return validation

    def submit(self, user_id: str, request: schemas.ValidationRequest) -> models.Validation:
        actor = self._actor(request.actor_id)
        source = models.Source(request.organisation_source)
        if self.repo.has_promotion_request(user_id, request.organisation_id.strip(), source, actor.id):
            raise ConflictError("There is a promotion request for this user and organisation.")
        validation = self.repo.create(models.Validation(
            user_id=user_id,
            actor_id=actor.id,
            organisation_id=request.organisation_id.strip(),
            organisation_name=request.organisation_name.strip(),
            organisation_source=source,
            organisation_role=request.organisation_role.strip(),
            organisation_website=request.organisation_website,
            status=models.ValidationStatus.REVIEW,
        ))
        logger.info("user %s submitted validation %s for actor %s", user_id, validation.id, actor.id)
        return validation

    def update_request(self, user_id: str, validation_id: int, request: schemas.ValidationRequest) -> models.Validation:
        """Let the owner amend a request that has not been reviewed yet."""
        validation = self.get_for_user(user_id, validation_id)
        if validation.status != models.ValidationStatus.REVIEW:
            raise ConflictError(f"Validation request has already been {models.ValidationStatus(validation.status).value}.")
        actor = self._actor(request.actor_id)
        source = models.Source(request.organisation_source)
        key_changed = (
            validation.organisation_id != request.organisation_id.strip()
            or validation.organisation_source != source
            or validation.actor_id != actor.id
        )
        if key_changed and self.repo.has_promotion_request(user_id, request.organisation_id.strip(), source, actor.id):
            raise ConflictError("There is a promotion request for this user and organisation.")
        validation.actor_id = actor.id
        validation.organisation_id = request.organisation_id.strip()
        validation.organisation_name = request.organisation_name.strip()
        validation.organisation_source = source
        validation.organisation_role = request.organisation_role.strip()
        validation.organisation_website = request.organisation_website
        return self.repo.save(validation)

    def list_for_user(self, user_id: str, page: int, size: int, status: Optional[models.ValidationStatus] = None) -> repositories.Page:
        return self.repo.fetch_page(page, size, status=status, user_id=user_id)

    def list_all(self, page: int, size: int, status: Optional[models.ValidationStatus] = None) -> repositories.Page:
        return self.repo.fetch_page(page, size, status=status)

    def update_status(self, validation_id: int, status: models.ValidationStatus, validated_by: str) -> models.Validation:
        if status == models.ValidationStatus.REVIEW:
            raise BadRequestError("Status can only be changed to APPROVED or REJECTED.")
        validation = self.get(validation_id)
        current = models.ValidationStatus(validation.status)
        if current != models.ValidationStatus.REVIEW:
            raise ConflictError(f"Validation request has already been {current.value}.")
        if status == models.ValidationStatus.APPROVED:
            role_service_for(self.session).assign_roles(validation.user_id, [settings.VALIDATED_ROLE])
            UserService(self.session).promote(validation.user_id)
        validation = self.repo.update_status(validation, status, validated_by)
        logger.info("validation %s set to %s by %s", validation_id, status.value, validated_by)
        return validation


class TemplateService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.TemplateRepository(session)
        self.actor_repo = repositories.ActorRepository(session)
        self.type_repo = repositories.AssessmentTypeRepository(session)

    def get(self, template_id: int) -> models.Template:
        template = self.repo.get(template_id)
        if not template:
            raise NotFoundError.for_entity("Template", template_id)
        return template

    def get_by_type_and_actor(self, type_id: int, actor_id: int) -> models.Template:
        """Return the newest template for the assessment type and actor."""
        if not self.type_repo.get(type_id):
            raise NotFoundError.for_entity("Assessment Type", type_id)
        if not self.actor_repo.get(actor_id):
            raise NotFoundError.for_entity("Actor", actor_id)
        template = self.repo.latest_by_type_and_actor(type_id, actor_id)
        if not template:
            raise NotFoundError(f"There is no Template for assessment type {type_id} and actor {actor_id}.")
        return template

    def list_templates(self, page: int, size: int) -> repositories.Page:
        return self.repo.fetch_page(page, size)

    def actors(self) -> List[models.Actor]:
        return self.actor_repo.list_all()

    def assessment_types(self) -> List[models.AssessmentType]:
        return self.type_repo.list_all()


class AssessmentService:
    """Create and maintain assessment documents.

    An assessment may only be created against a validation request that
    belongs to the caller, has been approved and targets the same actor
    as the template.
    """
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.AssessmentRepository(session)
        self.validations = ValidationService(session)
        self.templates = TemplateService(session)

    def create(self, user_id: str, request: schemas.AssessmentRequest) -> models.Assessment:
        validation = self.validations.get(request.validation_id)
        template = self.templates.get(request.template_id)
        if validation.user_id != user_id:
            raise ForbiddenError()
        if validation.status != models.ValidationStatus.APPROVED:
            raise ForbiddenError(NOT_APPROVED_MESSAGE)
        if validation.actor_id != template.actor_id:
            raise BadRequestError(ACTOR_MISMATCH_MESSAGE)
        doc = request.assessment_doc
        assessment = self.repo.create(models.Assessment(
            validation_id=validation.id,
            template_id=template.id,
            published=doc.published,
            assessment_doc=doc.to_json(),
        ))
        logger.info("user %s created assessment %s from template %s", user_id, assessment.id, template.id)
        return assessment

    def get(self, assessment_id: int) -> models.Assessment:
        assessment = self.repo.get(assessment_id)
        if not assessment:
            raise NotFoundError.for_entity("Assessment", assessment_id)
        return assessment

    def get_for_user(self, user_id: str, assessment_id: int, is_admin: bool = False) -> models.Assessment:
        assessment = self.get(assessment_id)
        if not is_admin and assessment.validation.user_id != user_id:
            raise ForbiddenError()
        return assessment

    def update(self, user_id: str, assessment_id: int, doc: schemas.TemplateDocument) -> models.Assessment:
        assessment = self.get_for_user(user_id, assessment_id)
        assessment = self.repo.update_doc(assessment, doc.to_json(), doc.published, models.utcnow())
        logger.info("user %s updated assessment %s", user_id, assessment_id)
        return assessment

    def delete(self, user_id: str, assessment_id: int) -> None:
        assessment = self.get_for_user(user_id, assessment_id)
        self.repo.delete(assessment)
        logger.info("user %s deleted assessment %s", user_id, assessment_id)

    def list_for_user(self, user_id: str, page: int, size: int) -> repositories.Page:
        return self.repo.fetch_page_by_user(user_id, page, size)

    def list_published(self, type_id: int, actor_id: int, page: int, size: int) -> repositories.Page:
        return self.repo.fetch_published_page(type_id, actor_id, page, size)


class IntegrationService:
    """Look up organisations in the external registries."""

    def sources(self) -> List[Dict[str, str]]:
        return registries.list_sources()

    @staticmethod
    def parse_source(source: str) -> models.Source:
        try:
            return models.Source(source)
        except ValueError:
            raise BadRequestError(f"organisation_source must be one of [{schemas.source_choices()}].")

    def lookup(self, source: str, query: str, page: int = 1):
        """Query `source` for `query`.

        ROR returns a search page `{"items", "total"}`; EOSC and re3data
        return a single organisation dict.
        """
        src = self.parse_source(source)
        if len(query.strip()) < 2:
            raise BadRequestError("Value must be at least 2 characters.")
        if page < 1:
            raise BadRequestError("Page number must be >= 1.")
        if src == models.Source.ROR:
            return registries.search_ror(query.strip(), page)
        if src == models.Source.EOSC:
            return registries.fetch_eosc_provider(query.strip())
        return registries.fetch_re3data_repository(query.strip())
