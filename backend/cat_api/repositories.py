"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
actors, validations, templates, assessments). Repositories return
SQLModel objects and perform commits/refreshes where appropriate.
Paginated queries return a `Page` with 1-based page numbers.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Generic, List, Optional, TypeVar
from sqlmodel import Session, select
from sqlalchemy import func
from . import models

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """One page of query results plus the total row count."""
    items: List[T]
    total: int
    page: int
    size: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return (self.total + self.size - 1) // self.size


def _paginate(session: Session, stmt, page: int, size: int) -> Page:
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = session.exec(count_stmt).one()
    items = session.exec(stmt.offset((page - 1) * size).limit(size)).all()
    return Page(items=list(items), total=total, page=page, size=size)


class UserRepository:
    """CRUD operations for `User` objects and their granted roles."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get(self, user_id: str) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def fetch_page(self, page: int, size: int) -> Page:
        stmt = select(models.User).order_by(models.User.registered_on, models.User.id)
        return _paginate(self.session, stmt, page, size)

    def update_metadata(self, user: models.User, name: str, surname: str, email: str, orcid_id: Optional[str]) -> models.User:
        """Overwrite the profile fields and stamp `updated_on`."""
        user.name = name
        user.surname = surname
        user.email = email
        user.orcid_id = orcid_id
        user.updated_on = models.utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def set_user_type(self, user: models.User, user_type: models.UserType) -> models.User:
        user.user_type = user_type
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def roles_for(self, user_id: str) -> List[str]:
        stmt = select(models.UserRole.role).where(models.UserRole.user_id == user_id)
        return list(self.session.exec(stmt).all())

    def add_roles(self, user_id: str, roles: List[str]) -> List[str]:
        """Grant `roles` to the user, skipping ones already held.

        Returns the roles that were newly added.
        """
        existing = set(self.roles_for(user_id))
        added = []
        for role in roles:
            if role in existing:
                continue
            self.session.add(models.UserRole(user_id=user_id, role=role))
            added.append(role)
        self.session.commit()
        return added


class ActorRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, actor_id: int) -> Optional[models.Actor]:
        return self.session.get(models.Actor, actor_id)

    def list_all(self) -> List[models.Actor]:
        return list(self.session.exec(select(models.Actor).order_by(models.Actor.id)).all())


class AssessmentTypeRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, type_id: int) -> Optional[models.AssessmentType]:
        return self.session.get(models.AssessmentType, type_id)

    def list_all(self) -> List[models.AssessmentType]:
        return list(self.session.exec(select(models.AssessmentType).order_by(models.AssessmentType.id)).all())


class ValidationRepository:
    """Queries over promotion (validation) requests."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, validation: models.Validation) -> models.Validation:
        self.session.add(validation)
        self.session.commit()
        self.session.refresh(validation)
        return validation

    def get(self, validation_id: int) -> Optional[models.Validation]:
        return self.session.get(models.Validation, validation_id)

    def save(self, validation: models.Validation) -> models.Validation:
        self.session.add(validation)
        self.session.commit()
        self.session.refresh(validation)
        return validation

    def has_promotion_request(self, user_id: str, organisation_id: str, source: models.Source, actor_id: int) -> bool:
        """Return True if the user already has an open or approved request
        for the same organisation, source and actor. Rejected requests do
        not block a new submission."""
        stmt = select(models.Validation.id).where(
            models.Validation.user_id == user_id,
            models.Validation.organisation_id == organisation_id,
            models.Validation.organisation_source == source,
            models.Validation.actor_id == actor_id,
            models.Validation.status != models.ValidationStatus.REJECTED,
        )
        return self.session.exec(stmt).first() is not None

    def fetch_page(self, page: int, size: int, status: Optional[models.ValidationStatus] = None, user_id: Optional[str] = None) -> Page:
        """Page through validations, optionally narrowed to a status and/or owner."""
        stmt = select(models.Validation)
        if user_id is not None:
            stmt = stmt.where(models.Validation.user_id == user_id)
        if status is not None:
            stmt = stmt.where(models.Validation.status == status)
        stmt = stmt.order_by(models.Validation.created_on.desc(), models.Validation.id.desc())
        return _paginate(self.session, stmt, page, size)

    def update_status(self, validation: models.Validation, status: models.ValidationStatus, validated_by: str) -> models.Validation:
        validation.status = status
        validation.validated_by = validated_by
        validation.validated_on = models.utcnow()
        return self.save(validation)


class TemplateRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, template_id: int) -> Optional[models.Template]:
        return self.session.get(models.Template, template_id)

    def latest_by_type_and_actor(self, type_id: int, actor_id: int) -> Optional[models.Template]:
        """Return the highest-version template for the pair, or None."""
        stmt = select(models.Template).where(
            models.Template.type_id == type_id,
            models.Template.actor_id == actor_id,
        ).order_by(models.Template.version.desc(), models.Template.id.desc())
        return self.session.exec(stmt).first()

    def fetch_page(self, page: int, size: int) -> Page:
        stmt = select(models.Template).order_by(models.Template.id)
        return _paginate(self.session, stmt, page, size)


class AssessmentRepository:
    """Persistence for assessment documents."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, assessment: models.Assessment) -> models.Assessment:
        self.session.add(assessment)
        self.session.commit()
        self.session.refresh(assessment)
        return assessment

    def get(self, assessment_id: int) -> Optional[models.Assessment]:
        return self.session.get(models.Assessment, assessment_id)

    def update_doc(self, assessment: models.Assessment, doc: dict, published: bool, updated_on: datetime) -> models.Assessment:
        assessment.assessment_doc = doc
        assessment.published = published
        assessment.updated_on = updated_on
        self.session.add(assessment)
        self.session.commit()
        self.session.refresh(assessment)
        return assessment

    def delete(self, assessment: models.Assessment) -> None:
        self.session.delete(assessment)
        self.session.commit()

    def fetch_page_by_user(self, user_id: str, page: int, size: int) -> Page:
        """Assessments whose validation request belongs to `user_id`."""
        stmt = (
            select(models.Assessment)
            .join(models.Validation, models.Assessment.validation_id == models.Validation.id)
            .where(models.Validation.user_id == user_id)
            .order_by(models.Assessment.created_on.desc(), models.Assessment.id.desc())
        )
        return _paginate(self.session, stmt, page, size)

    def fetch_published_page(self, type_id: int, actor_id: int, page: int, size: int) -> Page:
        """Published assessments made against templates of the given type and actor."""
        stmt = (
            select(models.Assessment)
            .join(models.Template, models.Assessment.template_id == models.Template.id)
            .where(
                models.Template.type_id == type_id,
                models.Template.actor_id == actor_id,
                models.Assessment.published == True,  # noqa: E712
            )
            .order_by(models.Assessment.created_on.desc(), models.Assessment.id.desc())
        )
        return _paginate(self.session, stmt, page, size)
