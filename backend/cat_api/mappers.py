"""Entity to DTO mapping.

Plain functions converting SQLModel rows into the response schemas,
plus the `PageResource` builder that adds navigation links.
"""

from typing import Callable, List

from starlette.datastructures import URL

from . import models, schemas
from .repositories import Page


def user_to_profile(user: models.User) -> schemas.UserProfile:
    return schemas.UserProfile(
        id=user.id,
        user_type=models.UserType(user.user_type).value,
        name=user.name,
        surname=user.surname,
        email=user.email,
        orcid_id=user.orcid_id,
        registered_on=user.registered_on,
        updated_on=user.updated_on,
    )


def validation_to_response(validation: models.Validation) -> schemas.ValidationResponse:
    user = validation.user
    return schemas.ValidationResponse(
        id=validation.id,
        user_id=validation.user_id,
        user_name=user.name if user else None,
        user_surname=user.surname if user else None,
        user_email=user.email if user else None,
        organisation_role=validation.organisation_role,
        organisation_id=validation.organisation_id,
        organisation_source=models.Source(validation.organisation_source).value,
        organisation_name=validation.organisation_name,
        organisation_website=validation.organisation_website,
        actor_id=validation.actor_id,
        actor_name=validation.actor.name if validation.actor else None,
        status=models.ValidationStatus(validation.status).value,
        created_on=validation.created_on,
        validated_on=validation.validated_on,
        validated_by=validation.validated_by,
    )


def actor_to_dto(actor: models.Actor) -> schemas.ActorOut:
    return schemas.ActorOut(id=actor.id, name=actor.name, description=actor.description)


def assessment_type_to_dto(assessment_type: models.AssessmentType) -> schemas.AssessmentTypeOut:
    return schemas.AssessmentTypeOut(
        id=assessment_type.id,
        name=assessment_type.name,
        label=assessment_type.label,
        description=assessment_type.description,
    )


def template_to_response(template: models.Template) -> schemas.TemplateResponse:
    return schemas.TemplateResponse(
        id=template.id,
        name=template.name,
        version=template.version,
        type_id=template.type_id,
        type_name=template.assessment_type.name if template.assessment_type else None,
        actor_id=template.actor_id,
        actor_name=template.actor.name if template.actor else None,
        created_on=template.created_on,
        template_doc=template.template_doc,
    )


def assessment_to_response(assessment: models.Assessment) -> schemas.AssessmentResponse:
    return schemas.AssessmentResponse(
        id=assessment.id,
        validation_id=assessment.validation_id,
        template_id=assessment.template_id,
        published=assessment.published,
        created_on=assessment.created_on,
        updated_on=assessment.updated_on,
        assessment_doc=assessment.assessment_doc,
    )


def page_links(url: URL, page: int, total_pages: int) -> List[schemas.Link]:
    """Build first/prev/next/last links by rewriting the `page` query param."""
    if total_pages <= 0:
        return []
    links = [schemas.Link(href=str(url.include_query_params(page=1)), rel="first")]
    if page > 1:
        links.append(schemas.Link(href=str(url.include_query_params(page=min(page - 1, total_pages))), rel="prev"))
    if page < total_pages:
        links.append(schemas.Link(href=str(url.include_query_params(page=page + 1)), rel="next"))
    links.append(schemas.Link(href=str(url.include_query_params(page=total_pages)), rel="last"))
    return links


def to_page_resource(page: Page, mapper: Callable, url: URL) -> schemas.PageResource:
    content = [mapper(item) for item in page.items]
    return schemas.PageResource(
        size_of_page=len(content),
        number_of_page=page.page,
        total_elements=page.total,
        total_pages=page.total_pages,
        content=content,
        links=page_links(url, page.page, page.total_pages),
    )
