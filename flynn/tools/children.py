"""Child lookup tools."""

from pydantic import BaseModel, Field

from flynn.services.authorization import AuthorizationService
from flynn.storage.family_repo import FamilyRepository
from flynn.tools.base import ToolContext, ToolDefinition, create_read_only_tool
from flynn.tools.errors import ChildNotFoundError


class ListChildrenInput(BaseModel):
    """list_children takes no arguments."""


class ChildInput(BaseModel):
    """Input schema for tools that act on a single child."""

    child_id: str = Field(
        ...,
        alias="childId",
        min_length=1,
        description="The child's id, as returned by list_children",
    )

    class Config:
        populate_by_name = True


def create_list_children_tool(family_repo: FamilyRepository, authorization: AuthorizationService) -> ToolDefinition:
    async def list_children(params: ListChildrenInput, context: ToolContext) -> list[dict]:
        child_ids = await authorization.accessible_child_ids(context)
        children = await family_repo.get_children(child_ids)
        return [{"id": c.id, "name": c.name, "birthDate": c.birth_date} for c in children]

    return create_read_only_tool(
        name="list_children",
        description=(
            "List the children the current user can access, with their ids, names and birth dates. "
            "Call this first when the user refers to a child by name."
        ),
        input_schema_class=ListChildrenInput,
        getter=list_children,
    )


def create_get_child_tool(family_repo: FamilyRepository, authorization: AuthorizationService) -> ToolDefinition:
    async def get_child(params: ChildInput, context: ToolContext) -> dict:
        await authorization.verify_access(params.child_id, context)
        child = await family_repo.get_child(params.child_id)
        if child is None:
            raise ChildNotFoundError(params.child_id)

        therapists = await family_repo.list_therapists_for_child(child.id)
        return {
            "id": child.id,
            "name": child.name,
            "birthDate": child.birth_date,
            "activeGoals": await family_repo.count_active_goals(child.id),
            "therapists": [{"id": t.therapist_id, "name": t.name} for t in therapists],
        }

    return create_read_only_tool(
        name="get_child",
        description="Get a child's profile: name, birth date, number of active goals and assigned therapists.",
        input_schema_class=ChildInput,
        getter=get_child,
    )
