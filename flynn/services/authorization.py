"""Child-level access checks used by every per-child tool."""

from dataclasses import dataclass
from typing import Literal, Protocol

from flynn.storage.family_repo import FamilyRepository
from flynn.tools.base import ToolContext
from flynn.tools.errors import ChildNotFoundError, ToolError, UnauthorizedError, UserIdRequiredError
from flynn.utils.logging import get_logger

logger = get_logger(__name__)

AccessVia = Literal["caregiver", "therapist", "family_context"]


@dataclass(frozen=True)
class AccessGrant:
    """Proof that a user may act on a child."""

    user_id: str
    child_id: str
    family_id: str
    via: AccessVia


class AuthorizationService(Protocol):
    async def verify_access(self, child_id: str, context: ToolContext) -> AccessGrant:
        """Return a grant or raise UnauthorizedError / ChildNotFoundError / UserIdRequiredError."""
        ...

    async def accessible_child_ids(self, context: ToolContext) -> list[str]: ...


class StoreAuthorizationService:
    """Authorization backed by the family repository.

    A user may access a child when any of these holds:
    the user is a caregiver in the child's family, the user is a therapist
    assigned to the child, or the tool context carries the child's family id.
    """

    def __init__(self, family_repo: FamilyRepository):
        self.family_repo = family_repo

    async def verify_access(self, child_id: str, context: ToolContext) -> AccessGrant:
        if not context.user_id:
            raise UserIdRequiredError()

        child = await self.family_repo.get_child(child_id)
        if child is None:
            raise ChildNotFoundError(child_id)

        if await self.family_repo.is_caregiver_in_family(context.user_id, child.family_id):
            return AccessGrant(context.user_id, child.id, child.family_id, "caregiver")

        if await self.family_repo.is_therapist_assigned(context.user_id, child.id):
            return AccessGrant(context.user_id, child.id, child.family_id, "therapist")

        if context.family_id and context.family_id == child.family_id:
            return AccessGrant(context.user_id, child.id, child.family_id, "family_context")

        logger.warning(f"Access denied: user {context.user_id} -> child {child_id}")
        raise UnauthorizedError()

    async def accessible_child_ids(self, context: ToolContext) -> list[str]:
        if not context.user_id:
            raise UserIdRequiredError()
        return await self.family_repo.list_accessible_child_ids(context.user_id, context.family_id)


async def verify_record_access(
    authorization: AuthorizationService, child_id: str, context: ToolContext, not_found: ToolError
) -> AccessGrant:
    """Access check for a record looked up by its own id (a goal, a session).

    Denial is raised as ``not_found``, so another family's record reads the
    same as one that does not exist.
    """
    try:
        return await authorization.verify_access(child_id, context)
    except UnauthorizedError:
        raise not_found from None
