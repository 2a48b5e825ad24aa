"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. Validator messages are returned to the
client verbatim, so they are written as complete sentences.

Template and assessment documents are modelled only structurally:
unknown keys are kept, and `result`/`value` fields are carried as-is.
"""

import re
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .models import Source, ValidationStatus

T = TypeVar("T")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ORCID_RE = re.compile(r"^\d{4}-\d{4}-\d{4}-\d{3}[\dX]$")


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def source_choices() -> str:
    return ", ".join(s.value for s in Source)


class InformativeResponse(BaseModel):
    """Body returned for every error and for plain acknowledgements."""
    code: int
    message: str


# --- users -------------------------------------------------------------


class UpdateUserProfile(BaseModel):
    """Payload for `PUT /v1/users/profile`."""
    name: Optional[str] = None
    surname: Optional[str] = None
    email: Optional[str] = None
    orcid_id: Optional[str] = None

    @model_validator(mode="after")
    def check_fields(self):
        for field in ("name", "surname", "email"):
            if _blank(getattr(self, field)):
                raise ValueError(f"{field} may not be empty.")
        if not EMAIL_RE.match(self.email.strip()):
            raise ValueError("Please provide a valid email address.")
        if self.orcid_id is not None and self.orcid_id.strip():
            if not ORCID_RE.match(self.orcid_id.strip()):
                raise ValueError("Not valid structure of the ORCID Identifier.")
        else:
            self.orcid_id = None
        return self


class UserProfile(BaseModel):
    id: str
    user_type: str
    name: Optional[str] = None
    surname: Optional[str] = None
    email: Optional[str] = None
    orcid_id: Optional[str] = None
    registered_on: datetime
    updated_on: Optional[datetime] = None


# --- validations -------------------------------------------------------


class ValidationRequest(BaseModel):
    """A user's promotion request for an actor within an organisation."""
    organisation_role: Optional[str] = None
    organisation_id: Optional[str] = None
    organisation_source: Optional[str] = None
    organisation_name: Optional[str] = None
    organisation_website: Optional[str] = None
    actor_id: Optional[int] = None

    @model_validator(mode="after")
    def check_fields(self):
        for field in ("organisation_role", "organisation_id", "organisation_source", "organisation_name"):
            if _blank(getattr(self, field)):
                raise ValueError(f"{field} may not be empty.")
        if self.actor_id is None:
            raise ValueError("actor_id may not be empty.")
        if self.organisation_source not in {s.value for s in Source}:
            raise ValueError(f"organisation_source must be one of [{source_choices()}].")
        return self


class UpdateValidationStatus(BaseModel):
    status: Optional[str] = None

    @field_validator("status")
    @classmethod
    def status_must_be_known(cls, v):
        if v not in {s.value for s in ValidationStatus}:
            raise ValueError(f"status must be one of [{', '.join(s.value for s in ValidationStatus)}].")
        return v

    @model_validator(mode="after")
    def status_required(self):
        if self.status is None:
            raise ValueError("status may not be empty.")
        return self


class ValidationResponse(BaseModel):
    id: int
    user_id: str
    user_name: Optional[str] = None
    user_surname: Optional[str] = None
    user_email: Optional[str] = None
    organisation_role: str
    organisation_id: str
    organisation_source: str
    organisation_name: str
    organisation_website: Optional[str] = None
    actor_id: int
    actor_name: Optional[str] = None
    status: str
    created_on: datetime
    validated_on: Optional[datetime] = None
    validated_by: Optional[str] = None


# --- templates ---------------------------------------------------------


class _Open(BaseModel):
    model_config = ConfigDict(extra="allow")


class NamedRef(_Open):
    id: Optional[Union[int, str]] = None
    name: Optional[str] = None


class Subject(NamedRef):
    type: Optional[str] = None


class Result(_Open):
    compliance: Optional[Any] = None
    ranking: Optional[Any] = None


class Guidance(_Open):
    id: Optional[str] = None
    description: Optional[str] = None


class MetricTest(_Open):
    id: Optional[str] = None
    name: Optional[str] = None
    text: Optional[str] = None
    type: Optional[str] = None
    value: Optional[Any] = None
    result: Optional[Any] = None
    guidance: Optional[Guidance] = None
    evidence_url: List[Any] = []


class Metric(_Open):
    type: Optional[str] = None
    algorithm: Optional[str] = None
    benchmark: Optional[Dict[str, Any]] = None
    value: Optional[Any] = None
    result: Optional[Any] = None
    tests: List[MetricTest] = []


class Criterion(_Open):
    id: Optional[str] = None
    name: str
    type: Optional[str] = None
    imperative: Optional[str] = None
    description: Optional[str] = None
    metric: Optional[Metric] = None


class Principle(_Open):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    criteria: List[Criterion] = []


class TemplateDocument(_Open):
    """Structure shared by template rubrics and the assessments made from them."""
    name: Optional[str] = None
    version: Optional[Union[str, int]] = None
    status: Optional[str] = None
    published: bool = False
    timestamp: Optional[str] = None
    actor: NamedRef
    assessment_type: NamedRef
    organisation: Optional[NamedRef] = None
    subject: Optional[Subject] = None
    result: Optional[Result] = None
    principles: List[Principle]

    def to_json(self) -> Dict[str, Any]:
        """Return the document as submitted (unset defaults are not added)."""
        return self.model_dump(mode="json", exclude_unset=True)


class ActorOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None


class AssessmentTypeOut(BaseModel):
    id: int
    name: str
    label: Optional[str] = None
    description: Optional[str] = None


class TemplateResponse(BaseModel):
    id: int
    name: Optional[str] = None
    version: int
    type_id: int
    type_name: Optional[str] = None
    actor_id: int
    actor_name: Optional[str] = None
    created_on: datetime
    template_doc: Dict[str, Any]


# --- assessments -------------------------------------------------------


class AssessmentRequest(BaseModel):
    validation_id: int
    template_id: int
    assessment_doc: TemplateDocument


class UpdateAssessmentRequest(BaseModel):
    assessment_doc: TemplateDocument


class AssessmentResponse(BaseModel):
    id: int
    validation_id: int
    template_id: int
    published: bool
    created_on: datetime
    updated_on: Optional[datetime] = None
    assessment_doc: Dict[str, Any]


# --- integrations ------------------------------------------------------


class OrganisationSource(BaseModel):
    id: str
    label: str
    url: str


class Organisation(BaseModel):
    id: str
    name: str
    website: Optional[str] = None
    acronym: Optional[str] = None


# --- pagination --------------------------------------------------------


class Link(BaseModel):
    href: str
    rel: str


class PageResource(BaseModel, Generic[T]):
    size_of_page: int
    number_of_page: int
    total_elements: int
    total_pages: int
    content: List[T]
    links: List[Link] = []
