"""
Role and ownership checks.

The engine never authenticates; it only compares the caller supplied by the
identity middleware against the parties recorded on an entity.
"""

from hiring_engine.errors import ForbiddenError
from hiring_engine.schemas import Actor, ActorRole


def authorize(
    actor: Actor,
    *roles: ActorRole,
    company_id: str,
    seeker_id: str,
    action: str,
) -> None:
    """
    Ensure the actor holds one of the roles and owns the entity.

    Args:
        actor: Caller from the identity middleware.
        *roles: Roles allowed to perform the action.
        company_id: Company recorded on the entity.
        seeker_id: Seeker recorded on the entity.
        action: Action name used in the error message.

    Raises:
        ForbiddenError: On role mismatch (ROLE) or ownership mismatch (OWNERSHIP).
    """
    if actor.role not in roles:
        allowed = ", ".join(role.value for role in roles)
        raise ForbiddenError(
            f"Only {allowed} may {action}",
            reason_code=ForbiddenError.ROLE,
        )
    if actor.role == ActorRole.COMPANY and actor.actor_id != company_id:
        raise ForbiddenError(f"Company {actor.actor_id} does not own this record", reason_code=ForbiddenError.OWNERSHIP)
    if actor.role == ActorRole.SEEKER and actor.actor_id != seeker_id:
        raise ForbiddenError(f"Seeker {actor.actor_id} does not own this record", reason_code=ForbiddenError.OWNERSHIP)
