from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import create_engine

from src.homehealth.config import settings
from src.homehealth.infra.db import inmemory as inmemory_repos
from src.homehealth.infra.db.models import Base
from src.homehealth.infra.db.session import create_sqlalchemy_session_factory
from src.homehealth.infra.db.sql_repositories import (
    SqlOasisAssessmentRepository,
    SqlTaskRepository,
    SqlVisitNoteRepository,
)

logger = logging.getLogger("workflow")


def init_sql_repositories(database_url: Optional[str] = None, *, force: bool = False) -> bool:
    """Optionally switch the repository singletons to SQL-backed implementations.

    Called from the application startup hook. Unless ``force`` is set, this is
    a no-op when USE_SQL_REPOS is disabled or no DATABASE_URL is configured,
    and the in-memory repositories stay active. Returns True when the swap
    happened.
    """

    if not (settings.use_sql_repos or force):
        return False

    db_url = database_url or settings.database_url
    if not db_url:
        logger.warning("USE_SQL_REPOS is enabled but DATABASE_URL is not set; keeping in-memory repositories")
        return False

    engine = create_engine(db_url, future=True)

    # Convenient for pilots; production schemas should come from migrations.
    Base.metadata.create_all(engine)

    session_factory = create_sqlalchemy_session_factory(db_url, engine=engine)

    # The services resolve repositories from the inmemory module at call time,
    # so swapping the module attributes is enough to rewire them.
    inmemory_repos.task_repository = SqlTaskRepository(session_factory)
    inmemory_repos.oasis_assessment_repository = SqlOasisAssessmentRepository(session_factory)
    inmemory_repos.visit_note_repository = SqlVisitNoteRepository(session_factory)
    logger.info("SQL repositories initialised")
    return True
