"""Authorization collaborator - creator-or-admin checks."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from predbites.storage.db import Database


class Authorizer(Protocol):
    def is_creator_or_admin(self, user_id: str, prediction_id: str) -> bool: ...


class AllowListAuthorizer:
    """Creator from storage, admins from a flat configured allow-list."""

    def __init__(self, db: Database, admin_accounts: list[str] | None = None) -> None:
        self.db = db
        self.admin_accounts = frozenset(a.lower() for a in admin_accounts or [])

    def is_admin(self, user_id: str) -> bool:
        return user_id.lower() in self.admin_accounts

    def is_creator_or_admin(self, user_id: str, prediction_id: str) -> bool:
        if self.is_admin(user_id):
            return True
        with self.db.cursor() as conn:
            row = conn.execute("SELECT creator_id FROM predictions WHERE id = ?", [prediction_id]).fetchone()
        return row is not None and row[0] == user_id
