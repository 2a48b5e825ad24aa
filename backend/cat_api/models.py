"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Template and assessment documents are stored as JSON columns and are
never interpreted by the application.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON, UniqueConstraint
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ValidationStatus(str, Enum):
    REVIEW = "REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Source(str, Enum):
    """Organisation registries a validation request may reference."""
    ROR = "ROR"
    EOSC = "EOSC"
    RE3DATA = "RE3DATA"


class UserType(str, Enum):
    ADMIN = "Admin"
    VALIDATED = "Validated"
    IDENTIFIED = "Identified"


class User(SQLModel, table=True):
    """A user registered on the service.

    `id` is the unique identifier issued by the identity provider
    (by default the `voperson_id` claim); profile fields are optional
    until the user fills them in. `user_type` follows the roles seen at
    authentication and is raised on approval.
    """
    id: str = Field(primary_key=True)
    name: Optional[str] = None
    surname: Optional[str] = None
    email: Optional[str] = None
    orcid_id: Optional[str] = None
    user_type: UserType = Field(default=UserType.IDENTIFIED)
    registered_on: datetime = Field(default_factory=utcnow)
    updated_on: Optional[datetime] = None
    roles: List['UserRole'] = Relationship(back_populates='user')
    validations: List['Validation'] = Relationship(back_populates='user')


class UserRole(SQLModel, table=True):
    """A role granted to a user by this service (e.g. on approval)."""
    __tablename__ = "user_role"
    __table_args__ = (UniqueConstraint("user_id", "role"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key='user.id', index=True)
    role: str
    granted_on: datetime = Field(default_factory=utcnow)
    user: Optional[User] = Relationship(back_populates='roles')


class Actor(SQLModel, table=True):
    """A role persona (e.g. PID Owner) that scopes templates and validations."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True)
    description: Optional[str] = None


class AssessmentType(SQLModel, table=True):
    __tablename__ = "assessment_type"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    label: Optional[str] = None
    description: Optional[str] = None


class Validation(SQLModel, table=True):
    """A user's request to be promoted for an actor within an organisation."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key='user.id', index=True)
    actor_id: int = Field(foreign_key='actor.id')
    organisation_id: str
    organisation_name: str
    organisation_source: Source
    organisation_role: str
    organisation_website: Optional[str] = None
    status: ValidationStatus = Field(default=ValidationStatus.REVIEW, index=True)
    created_on: datetime = Field(default_factory=utcnow)
    validated_on: Optional[datetime] = None
    validated_by: Optional[str] = None
    user: Optional[User] = Relationship(back_populates='validations')
    actor: Optional[Actor] = Relationship()


class Template(SQLModel, table=True):
    """A versioned JSON rubric for an (assessment type, actor) pair."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: Optional[str] = None
    version: int = 1
    type_id: int = Field(foreign_key='assessment_type.id', index=True)
    actor_id: int = Field(foreign_key='actor.id', index=True)
    created_on: datetime = Field(default_factory=utcnow)
    template_doc: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    assessment_type: Optional[AssessmentType] = Relationship()
    actor: Optional[Actor] = Relationship()


class Assessment(SQLModel, table=True):
    """A filled-in template document submitted against an approved validation.

    `published` mirrors the document's own `published` flag so that
    public listings can be filtered in SQL.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    validation_id: int = Field(foreign_key='validation.id', index=True)
    template_id: int = Field(foreign_key='template.id', index=True)
    published: bool = Field(default=False, index=True)
    created_on: datetime = Field(default_factory=utcnow)
    updated_on: Optional[datetime] = None
    assessment_doc: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    validation: Optional[Validation] = Relationship()
    template: Optional[Template] = Relationship()


class SchemaHistory(SQLModel, table=True):
    """Versioned SQL migrations that have been applied to this database."""
    __tablename__ = "schema_history"
    version: str = Field(primary_key=True)
    description: str
    script: str
    applied_on: datetime = Field(default_factory=utcnow)
