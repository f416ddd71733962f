"""Actor directory — resolves an actor id to the identity the workflow needs.

The directory is the only place the workflow learns an actor's role; the
HTTP layer passes a bare actor id and never a role, so authorization cannot
be spoofed by the client.
"""

from __future__ import annotations

from dataclasses import dataclass

from memodesk.core.exceptions import NotFoundError
from memodesk.models import db
from memodesk.models.auth import User


@dataclass(frozen=True)
class Actor:
    """Resolved actor snapshot used for authorization and display fields."""

    id: int
    role: str
    display_name: str
    department: str | None = None


def resolve_actor(actor_id) -> Actor:
    """Return the active actor for ``actor_id``.

    Raises:
        NotFoundError: unknown, malformed or inactive actor id.
    """
    try:
        pk = int(actor_id)
    except (TypeError, ValueError):
        raise NotFoundError("Actor", actor_id)
    user = db.session.get(User, pk)
    if user is None or user.status != "active":
        raise NotFoundError("Actor", actor_id)
    return Actor(
        id=user.id,
        role=user.role,
        display_name=user.display_name,
        department=user.department,
    )


def resolve_actors(actor_ids) -> list[Actor]:
    """Resolve several ids, preserving order and dropping duplicates."""
    seen = []
    for actor_id in actor_ids or []:
        actor = resolve_actor(actor_id)
        if actor.id not in [a.id for a in seen]:
            seen.append(actor)
    return seen
