from __future__ import annotations

from collections.abc import Callable

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

SessionFactory = Callable[[], Session]


def create_sqlalchemy_session_factory(database_url: str, *, engine: Engine | None = None) -> SessionFactory:
    """Build a factory producing SQLAlchemy sessions for the repositories.

    ``expire_on_commit`` is off so rows converted to domain models after a
    commit do not trigger a refresh.
    """

    engine = engine or create_engine(database_url, future=True)
    session_local = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, class_=Session)

    def _factory() -> Session:
        return session_local()

    return _factory
