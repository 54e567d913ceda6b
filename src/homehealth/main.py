import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.homehealth.api.v1.routes_assessments import router as assessments_router_v1
from src.homehealth.api.v1.routes_qa_review import router as qa_review_router_v1
from src.homehealth.api.v1.routes_system import router as system_router_v1
from src.homehealth.api.v1.routes_tasks import router as tasks_router_v1
from src.homehealth.api.v1.routes_visit_notes import router as visit_notes_router_v1
from src.homehealth.config import settings
from src.homehealth.domain.errors import WorkflowError
from src.homehealth.infra.db.bootstrap import init_sql_repositories

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger("workflow")

app = FastAPI(title="Home Health Clinical Workflow API")

# HTTP status per workflow error kind. Every kind is recoverable by the
# caller, so none of them maps to a 5xx.
ERROR_STATUS = {
    "permission_denied": status.HTTP_403_FORBIDDEN,
    "invalid_state": status.HTTP_409_CONFLICT,
    "concurrent_modification": status.HTTP_409_CONFLICT,
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "not_found": status.HTTP_404_NOT_FOUND,
}


@app.on_event("startup")
async def on_startup() -> None:
    """Application startup hook.

    When USE_SQL_REPOS is enabled and a DATABASE_URL is configured, this
    switches the task, assessment and visit-note repositories to SQL. In
    other environments (tests, local dev without a database) this is a no-op
    and the in-memory repositories remain active.
    """

    init_sql_repositories()


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.kind, exc.message)
    body = {"error": exc.kind, "detail": exc.message}
    for attribute in ("current", "requested", "field"):
        value = getattr(exc, attribute, None)
        if value is not None:
            body[attribute] = value
    return JSONResponse(status_code=status_code, content=body)


# CORS configuration: permissive by default for development. Tighten via
# CORS_ALLOW_ORIGINS in production deployments.
allow_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    """Basic liveness probe for the API root."""
    return {"status": "ok"}


# Versioned API routers
app.include_router(system_router_v1, prefix="/api/v1")
app.include_router(tasks_router_v1, prefix="/api/v1")
app.include_router(assessments_router_v1, prefix="/api/v1")
app.include_router(visit_notes_router_v1, prefix="/api/v1")
app.include_router(qa_review_router_v1, prefix="/api/v1")
