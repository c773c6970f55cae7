"""Role model - two-tier permission predicates.

A principal is described by its global role (User.global_role), its project
role (ProjectMember.project_role, None for non-members) and whether it created
the project. The predicates below are pure; every mutation path asks one of
them instead of re-deriving ``admin or creator or leader`` inline.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import GlobalRole, Project, ProjectMember, ProjectRole

RoleValue = Union[str, GlobalRole, ProjectRole, None]


def _global(role: RoleValue) -> Optional[GlobalRole]:
    if role is None:
        return None
    return role if isinstance(role, GlobalRole) else GlobalRole(role)


def _project(role: RoleValue) -> Optional[ProjectRole]:
    if role is None:
        return None
    return role if isinstance(role, ProjectRole) else ProjectRole(role)


# ============================================================
# GLOBAL ROLE CHECKS
# ============================================================

def is_admin(global_role: RoleValue) -> bool:
    return _global(global_role) == GlobalRole.ADMIN


def is_leader_or_admin(global_role: RoleValue) -> bool:
    return _global(global_role) in (GlobalRole.ADMIN, GlobalRole.LEADER)


def can_create_project(global_role: RoleValue) -> bool:
    return is_leader_or_admin(global_role)


def can_hold_project_leadership(global_role: RoleValue) -> bool:
    """Only global LEADERs may be made project LEADER."""
    return _global(global_role) == GlobalRole.LEADER


def can_change_user_role(actor_role: RoleValue, actor_id: str, target_id: str) -> bool:
    return is_admin(actor_role) and actor_id != target_id


# ============================================================
# PROJECT-SCOPED CHECKS
# ============================================================

def can_manage_project(global_role: RoleValue, project_role: RoleValue, is_creator: bool) -> bool:
    """Settings, members, assignment, deletion."""
    return is_admin(global_role) or is_creator or _project(project_role) == ProjectRole.LEADER


def can_view_project(global_role: RoleValue, project_role: RoleValue, is_creator: bool) -> bool:
    return is_admin(global_role) or is_creator or project_role is not None


def can_toggle_completion(global_role: RoleValue, is_creator: bool) -> bool:
    return is_admin(global_role) or is_creator


def can_remove_member(global_role: RoleValue, is_creator: bool) -> bool:
    return is_admin(global_role) or is_creator


def can_contribute(global_role: RoleValue, project_role: RoleValue, is_creator: bool) -> bool:
    """Create cards and subtasks, run timers, reset finished cards.

    OBSERVER is read-only even though it is a membership.
    """
    if is_admin(global_role):
        return True
    if not (is_creator or project_role is not None):
        return False
    return _project(project_role) != ProjectRole.OBSERVER


def can_update_subtask(
    global_role: RoleValue, project_role: RoleValue, is_creator: bool, is_card_assignee: bool,
) -> bool:
    return can_manage_project(global_role, project_role, is_creator) or is_card_assignee


def can_delete_subtask(global_role: RoleValue, project_role: RoleValue, is_creator: bool) -> bool:
    return can_manage_project(global_role, project_role, is_creator)


def is_assignable(project_role: RoleValue, actor_global_role: RoleValue) -> bool:
    """Observers are never assignment targets unless an ADMIN overrides."""
    if _project(project_role) == ProjectRole.OBSERVER:
        return is_admin(actor_global_role)
    return True


# ============================================================
# ACCESS CONTEXT
# ============================================================

@dataclass
class ProjectAccess:
    """The (global role, project role, is_creator) triple for one user/project pair"""

    user_id: str
    global_role: GlobalRole
    project_role: Optional[ProjectRole]
    is_creator: bool
    membership: Optional[ProjectMember] = None

    @property
    def is_admin(self) -> bool:
        return is_admin(self.global_role)

    @property
    def can_manage(self) -> bool:
        return can_manage_project(self.global_role, self.project_role, self.is_creator)

    @property
    def can_view(self) -> bool:
        return can_view_project(self.global_role, self.project_role, self.is_creator)

    @property
    def can_toggle_completion(self) -> bool:
        return can_toggle_completion(self.global_role, self.is_creator)

    @property
    def can_remove_member(self) -> bool:
        return can_remove_member(self.global_role, self.is_creator)

    @property
    def can_contribute(self) -> bool:
        return can_contribute(self.global_role, self.project_role, self.is_creator)

    @property
    def can_delete_subtask(self) -> bool:
        return can_delete_subtask(self.global_role, self.project_role, self.is_creator)

    def can_update_subtask(self, is_card_assignee: bool) -> bool:
        return can_update_subtask(self.global_role, self.project_role, self.is_creator, is_card_assignee)


async def load_project_access(db: AsyncSession, project: Project, actor: Any) -> ProjectAccess:
    """Resolve the actor's standing in a project. ``actor`` needs ``id`` and ``global_role``."""
    result = await db.execute(
        select(ProjectMember).where(
            ProjectMember.project_id == project.id,
            ProjectMember.user_id == actor.id,
        )
    )
    membership = result.scalar_one_or_none()
    return ProjectAccess(
        user_id=actor.id,
        global_role=_global(actor.global_role),
        project_role=membership.project_role if membership else None,
        is_creator=project.created_by == actor.id,
        membership=membership,
    )
