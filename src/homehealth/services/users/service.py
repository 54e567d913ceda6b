from __future__ import annotations

from typing import Dict, Iterable, Optional

from src.homehealth.domain.models.user import Role, User


class InMemoryUserService:
    """Very small in-memory user store keyed by auth subject.

    Stands in for the external identity provider: the security layer maps a
    hashed API-key subject to a concrete User carrying roles and
    permissions.
    """

    def __init__(self) -> None:
        self._by_subject: Dict[str, User] = {}

    def upsert_user_for_subject(
        self,
        *,
        subject: str,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        roles: Iterable[Role] = (),
        permissions: Iterable[str] = (),
    ) -> User:
        existing = self._by_subject.get(subject)
        if existing is not None:
            return existing

        user = User(
            id=user_id or subject,
            email=email,
            roles=frozenset(roles),
            permissions=frozenset(permissions),
        )
        self._by_subject[subject] = user
        return user

    def register(self, subject: str, user: User) -> User:
        self._by_subject[subject] = user
        return user

    def get_user_by_subject(self, subject: str) -> Optional[User]:
        return self._by_subject.get(subject)


user_service = InMemoryUserService()
