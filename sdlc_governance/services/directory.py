"""User Directory adapter — resolves approver ids to users."""

from __future__ import annotations

from sqlalchemy import select

from sdlc_governance.core.exceptions import InvalidInputError, NotFoundError
from sdlc_governance.models import db
from sdlc_governance.models.auth import User


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def resolve_users(user_ids: list[int]) -> list[User]:
    """Return users in the order of ``user_ids``.

    Raises:
        InvalidInputError: if any id does not resolve to a known user.
    """
    if not user_ids:
        return []
    rows = db.session.execute(select(User).where(User.id.in_(user_ids))).scalars().all()
    by_id = {u.id: u for u in rows}
    missing = [uid for uid in user_ids if uid not in by_id]
    if missing:
        raise InvalidInputError(
            f"Unknown user id(s): {', '.join(str(m) for m in missing)}",
            details={"unknown_user_ids": missing},
        )
    return [by_id[uid] for uid in user_ids]


def find_by_email(email: str) -> User | None:
    if not email:
        return None
    return db.session.execute(
        select(User).where(db.func.lower(User.email) == email.strip().lower())
    ).scalar_one_or_none()


def display_name(user_id: int | None) -> str | None:
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    return (user.name or user.email) if user else None
