from fastapi import APIRouter

from src.homehealth.config import settings
from src.homehealth.infra.db import inmemory as inmemory_repos
from src.homehealth.infra.db.sql_repositories import SqlTaskRepository

router = APIRouter(prefix="", tags=["system"])


@router.get("/health")
async def health_check_v1() -> dict:
    """API v1 health endpoint."""
    return {"status": "ok", "version": "v1"}


@router.get("/system/storage")
async def storage_info_v1() -> dict:
    """Report which repository backend is active (no connection details)."""

    backend = "sql" if isinstance(inmemory_repos.task_repository, SqlTaskRepository) else "memory"
    return {"backend": backend, "agency_timezone": settings.agency_timezone}
