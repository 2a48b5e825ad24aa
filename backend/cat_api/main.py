"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the CAT (Compliance
Assessment Toolkit) backend. Controllers are intentionally thin: they
authenticate the caller, delegate to services, and map the returned
entities onto response schemas.

Endpoints implemented:
- POST /v1/users/register, GET|PUT /v1/users/profile
- POST|GET /v1/validations, GET|PUT /v1/validations/{id}
- GET /v1/templates, GET /v1/templates/{id},
  GET /v1/templates/by-type/{type-id}/by-actor/{actor-id},
  GET /v1/templates/assessment-types, GET /v1/actors
- POST|GET /v1/assessments, GET|PUT|DELETE /v1/assessments/{id},
  GET /v1/assessments/by-type/{type-id}/by-actor/{actor-id}
- GET /v1/integrations/organisations,
  GET /v1/integrations/organisations/{source}/{query}
- GET /v1/admin/users, GET /v1/admin/validations,
  GET /v1/admin/validations/{id}, PUT /v1/admin/validations/{id}/update-status
- GET /health
"""

import json
import logging
import os
import time
import uuid
from typing import List, Optional, Tuple

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import mappers, models, repositories, schemas, services
from .auth import Identity, get_identity, get_registered_identity, require_admin, require_role
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import BadRequestError, CatError
from .utils.registries import ROR_PAGE_SIZE

app = FastAPI(title="CAT - Compliance Assessment Toolkit API")
logger = logging.getLogger("cat.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

# Wide-open CORS keeps local frontends working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()

require_validated = require_role(settings.VALIDATED_ROLE)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "client": request.client.host if request.client else "unknown",
            },
            ensure_ascii=True,
        ),
    )
    return response


def _informative(code: int, message: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=code, content={"code": code, "message": message}, headers=headers)


def _validation_message(exc: RequestValidationError) -> str:
    """Turn the first validation error into a single readable sentence."""
    errors = exc.errors()
    if not errors:
        return "Bad Request."
    err = errors[0]
    raw_loc = tuple(err.get("loc") or ())
    loc = ".".join(str(p) for p in raw_loc if p not in ("body", "query", "path"))
    kind = err.get("type")
    if kind == "json_invalid":
        return "The request body is not valid JSON."
    if kind == "value_error":
        ctx_error = (err.get("ctx") or {}).get("error")
        if ctx_error is not None:
            return str(ctx_error)
    if kind == "missing":
        if raw_loc == ("body",):
            return "The request body is empty."
        return f"{loc} may not be empty."
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


@app.exception_handler(CatError)
async def cat_error_handler(request: Request, exc: CatError):
    if exc.code >= 500:
        logger.error("request %s failed: %s", request.url.path, exc.message)
    return _informative(exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return _informative(400, _validation_message(exc))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _informative(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled exception on %s", request.url.path)
    return _informative(500, "Internal Server Error.")


def pagination(page: int = 1, size: int = 10) -> Tuple[int, int]:
    """Query parameters shared by every paginated listing (1-based)."""
    if page < 1:
        raise BadRequestError("Page number must be >= 1.")
    if size < 1 or size > 100:
        raise BadRequestError("Page size must be between 1 and 100.")
    return page, size


def _parse_status(status: Optional[str]) -> Optional[models.ValidationStatus]:
    if not status:
        return None
    try:
        return models.ValidationStatus(status)
    except ValueError:
        choices = ", ".join(s.value for s in models.ValidationStatus)
        raise BadRequestError(f"status must be one of [{choices}].")


# --- users -------------------------------------------------------------


@app.post('/v1/users/register', status_code=201, response_model=schemas.UserProfile)
def register(identity: Identity = Depends(get_identity), db: Session = Depends(get_session)):
    """Register the authenticated identity on the service.

    Registration is the prerequisite for every other `/v1` resource.
    Returns 409 if the user is already registered.
    """
    user = services.UserService(db).register(identity.id, identity.roles)
    return mappers.user_to_profile(user)


@app.get('/v1/users/profile', response_model=schemas.UserProfile)
def get_profile(identity: Identity = Depends(get_registered_identity), db: Session = Depends(get_session)):
    """Return the caller's profile."""
    user = services.UserService(db).get(identity.id)
    return mappers.user_to_profile(user)


@app.put('/v1/users/profile', response_model=schemas.UserProfile)
def update_profile(
    payload: schemas.UpdateUserProfile,
    identity: Identity = Depends(get_registered_identity),
    db: Session = Depends(get_session),
):
    """Update the caller's name, surname, email and (optional) ORCID iD."""
    user = services.UserService(db).update_profile(identity.id, payload)
    return mappers.user_to_profile(user)


# --- validations -------------------------------------------------------


@app.post('/v1/validations', status_code=201, response_model=schemas.ValidationResponse)
def submit_validation(
    payload: schemas.ValidationRequest,
    identity: Identity = Depends(get_registered_identity),
    db: Session = Depends(get_session),
):
    """Request promotion to a validated user for an actor within an organisation.

    The request starts in REVIEW. A second request for the same
    organisation, source and actor is rejected with 409 unless the
    earlier one was rejected.
    """
    validation = services.ValidationService(db).submit(identity.id, payload)
    return mappers.validation_to_response(validation)


@app.get('/v1/validations', response_model=schemas.PageResource[schemas.ValidationResponse])
def list_my_validations(
    request: Request,
    status: Optional[str] = None,
    paging: Tuple[int, int] = Depends(pagination),
    identity: Identity = Depends(get_registered_identity),
    db: Session = Depends(get_session),
):
    """List the caller's validation requests, optionally filtered by status."""
    page, size = paging
    result = services.ValidationService(db).list_for_user(identity.id, page, size, _parse_status(status))
    return mappers.to_page_resource(result, mappers.validation_to_response, request.url)


@app.get('/v1/validations/{validation_id}', response_model=schemas.ValidationResponse)
def get_my_validation(
    validation_id: int,
    identity: Identity = Depends(get_registered_identity),
    db: Session = Depends(get_session),
):
    validation = services.ValidationService(db).get_for_user(identity.id, validation_id)
    return mappers.validation_to_response(validation)


@app.put('/v1/validations/{validation_id}', response_model=schemas.ValidationResponse)
def update_my_validation(
    validation_id: int,
    payload: schemas.ValidationRequest,
    identity: Identity = Depends(get_registered_identity),
    db: Session = Depends(get_session),
):
    """Amend a validation request that is still under review."""
    validation = services.ValidationService(db).update_request(identity.id, validation_id, payload)
    return mappers.validation_to_response(validation)


# --- templates ---------------------------------------------------------


@app.get('/v1/actors', response_model=List[schemas.ActorOut])
def list_actors(identity: Identity = Depends(get_registered_identity), db: Session = Depends(get_session)):
    return [mappers.actor_to_dto(a) for a in services.TemplateService(db).actors()]


@app.get('/v1/templates', response_model=schemas.PageResource[schemas.TemplateResponse])
def list_templates(
    request: Request,
    paging: Tuple[int, int] = Depends(pagination),
    identity: Identity = Depends(get_registered_identity),
    db: Session = Depends(get_session),
):
    page, size = paging
    result = services.TemplateService(db).list_templates(page, size)
    return mappers.to_page_resource(result, mappers.template_to_response, request.url)


@app.get('/v1/templates/assessment-types', response_model=List[schemas.AssessmentTypeOut])
def list_assessment_types(identity: Identity = Depends(get_registered_identity), db: Session = Depends(get_session)):
    return [mappers.assessment_type_to_dto(t) for t in services.TemplateService(db).assessment_types()]


@app.get('/v1/templates/by-type/{type_id}/by-actor/{actor_id}', response_model=schemas.TemplateResponse)
def get_template_by_type_and_actor(
    type_id: int,
    actor_id: int,
    identity: Identity = Depends(get_registered_identity),
    db: Session = Depends(get_session),
):
    """Return the newest template for an assessment type and actor."""
    template = services.TemplateService(db).get_by_type_and_actor(type_id, actor_id)
    return mappers.template_to_response(template)


@app.get('/v1/templates/{template_id}', response_model=schemas.TemplateResponse)
def get_template(
    template_id: int,
    identity: Identity = Depends(get_registered_identity),
    db: Session = Depends(get_session),
):
    return mappers.template_to_response(services.TemplateService(db).get(template_id))


# --- assessments -------------------------------------------------------


@app.post('/v1/assessments', status_code=201, response_model=schemas.AssessmentResponse)
def create_assessment(
    payload: schemas.AssessmentRequest,
    identity: Identity = Depends(require_validated),
    db: Session = Depends(get_session),
):
    """Create an assessment from a template against an approved validation.

    The validation must belong to the caller and be APPROVED (403
    otherwise); its actor must match the template's actor (400).
    The document is stored as submitted.
    """
    assessment = services.AssessmentService(db).create(identity.id, payload)
    return mappers.assessment_to_response(assessment)


@app.get('/v1/assessments', response_model=schemas.PageResource[schemas.AssessmentResponse])
def list_my_assessments(
    request: Request,
    paging: Tuple[int, int] = Depends(pagination),
    identity: Identity = Depends(get_registered_identity),
    db: Session = Depends(get_session),
):
    page, size = paging
    result = services.AssessmentService(db).list_for_user(identity.id, page, size)
    return mappers.to_page_resource(result, mappers.assessment_to_response, request.url)


@app.get('/v1/assessments/by-type/{type_id}/by-actor/{actor_id}', response_model=schemas.PageResource[schemas.AssessmentResponse])
def list_published_assessments(
    request: Request,
    type_id: int,
    actor_id: int,
    paging: Tuple[int, int] = Depends(pagination),
    identity: Identity = Depends(get_registered_identity),
    db: Session = Depends(get_session),
):
    """List published assessments for an assessment type and actor."""
    page, size = paging
    result = services.AssessmentService(db).list_published(type_id, actor_id, page, size)
    return mappers.to_page_resource(result, mappers.assessment_to_response, request.url)


@app.get('/v1/assessments/{assessment_id}', response_model=schemas.AssessmentResponse)
def get_assessment(
    assessment_id: int,
    identity: Identity = Depends(get_registered_identity),
    db: Session = Depends(get_session),
):
    """Return an assessment owned by the caller (admins may read any)."""
    assessment = services.AssessmentService(db).get_for_user(identity.id, assessment_id, is_admin=identity.is_admin)
    return mappers.assessment_to_response(assessment)


@app.put('/v1/assessments/{assessment_id}', response_model=schemas.AssessmentResponse)
def update_assessment(
    assessment_id: int,
    payload: schemas.UpdateAssessmentRequest,
    identity: Identity = Depends(require_validated),
    db: Session = Depends(get_session),
):
    assessment = services.AssessmentService(db).update(identity.id, assessment_id, payload.assessment_doc)
    return mappers.assessment_to_response(assessment)


@app.delete('/v1/assessments/{assessment_id}', response_model=schemas.InformativeResponse)
def delete_assessment(
    assessment_id: int,
    identity: Identity = Depends(require_validated),
    db: Session = Depends(get_session),
):
    services.AssessmentService(db).delete(identity.id, assessment_id)
    return schemas.InformativeResponse(code=200, message="Assessment has been successfully deleted.")


# --- integrations ------------------------------------------------------


@app.get('/v1/integrations/organisations', response_model=List[schemas.OrganisationSource])
def organisation_sources(identity: Identity = Depends(get_registered_identity)):
    """List the registries organisations can be looked up in."""
    return services.IntegrationService().sources()


@app.get('/v1/integrations/organisations/{source}/{query}')
def organisation_by_source(
    request: Request,
    source: str,
    query: str,
    page: int = 1,
    identity: Identity = Depends(get_registered_identity),
):
    """Look up an organisation in ROR, EOSC or re3data.

    ROR is searched by id, name, acronym or alias and answers with a
    page of organisations; EOSC and re3data are queried by id and answer
    with a single organisation.
    """
    svc = services.IntegrationService()
    result = svc.lookup(source, query, page)
    if svc.parse_source(source) != models.Source.ROR:
        return schemas.Organisation(**result)
    found = repositories.Page(items=result["items"], total=result["total"], page=page, size=ROR_PAGE_SIZE)
    return mappers.to_page_resource(found, lambda org: schemas.Organisation(**org), request.url)


# --- administration ----------------------------------------------------


@app.get('/v1/admin/users', response_model=schemas.PageResource[schemas.UserProfile])
def admin_list_users(
    request: Request,
    paging: Tuple[int, int] = Depends(pagination),
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_session),
):
    page, size = paging
    result = services.UserService(db).list_users(page, size)
    return mappers.to_page_resource(result, mappers.user_to_profile, request.url)


@app.get('/v1/admin/validations', response_model=schemas.PageResource[schemas.ValidationResponse])
def admin_list_validations(
    request: Request,
    status: Optional[str] = None,
    paging: Tuple[int, int] = Depends(pagination),
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_session),
):
    """List every validation request, optionally filtered by status."""
    page, size = paging
    result = services.ValidationService(db).list_all(page, size, _parse_status(status))
    return mappers.to_page_resource(result, mappers.validation_to_response, request.url)


@app.get('/v1/admin/validations/{validation_id}', response_model=schemas.ValidationResponse)
def admin_get_validation(
    validation_id: int,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_session),
):
    return mappers.validation_to_response(services.ValidationService(db).get(validation_id))


@app.put('/v1/admin/validations/{validation_id}/update-status', response_model=schemas.ValidationResponse)
def admin_update_validation_status(
    validation_id: int,
    payload: schemas.UpdateValidationStatus,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_session),
):
    """Approve or reject a validation request under review.

    Approval grants the requester the validated role.
    """
    validation = services.ValidationService(db).update_status(
        validation_id, models.ValidationStatus(payload.status), identity.id
    )
    return mappers.validation_to_response(validation)


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
