"""Project store: typed data-access operations over the Project aggregate.

``ProjectStore`` is the port callers depend on; ``SqlProjectStore`` is the
SQLAlchemy implementation. Every mutation runs inside ``unit_of_work`` so a
multi-statement operation either commits as a whole or not at all.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from atlas.db import unit_of_work
from atlas.errors import ConflictError, NotFoundError
from atlas.keys import ContractKey, MembershipKey, RepositoryKey
from atlas.models import (
    Application,
    Project,
    ProjectContract,
    ProjectFunding,
    ProjectRepository,
    ProjectReward,
    ProjectSnapshot,
    TeamRole,
    User,
    UserProjects,
)
from atlas.schemas import (
    ContractCreate,
    FundingCreate,
    ProjectCreate,
    ProjectUpdate,
    RepositoryCreate,
    RepositoryUpdate,
)
from atlas.utils import to_json, utc_now

log = logging.getLogger(__name__)

_JSON_LIST_FIELDS = {"website": "website_json", "farcaster": "farcaster_json"}
# set by project members, never by a repository source
_CARRIED_FLAGS = ("verified", "contains_contracts", "npm_package", "crate")


@dataclass(frozen=True)
class ReplaceResult:
    """Outcome of a replace-collection transaction."""

    removed: int
    created: int


# ---------------------------------------------------------------------------
# Visibility policy
# ---------------------------------------------------------------------------


def only_active(stmt: Select) -> Select:
    """Hide soft-deleted projects. *stmt* must select or join ``Project``."""
    return stmt.where(Project.deleted_at.is_(None))


def active_projects() -> Select:
    return only_active(select(Project))


def _detail_options() -> tuple:
    return (
        selectinload(Project.team).selectinload(UserProjects.user),
        selectinload(Project.repos),
        selectinload(Project.contracts),
        selectinload(Project.funding),
        selectinload(Project.snapshots),
        selectinload(Project.applications),
    )


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def _project_columns(values: dict[str, Any]) -> dict[str, Any]:
    """Map request field names onto Project columns (list fields are stored as JSON)."""
    out: dict[str, Any] = {}
    for field, value in values.items():
        if field in _JSON_LIST_FIELDS:
            out[_JSON_LIST_FIELDS[field]] = to_json(value)
        else:
            out[field] = value
    return out


def apply_updates(obj: Any, updates: dict[str, Any]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field, val in updates.items():
        if val is not None:
            setattr(obj, field, val)


# ---------------------------------------------------------------------------
# Port
# ---------------------------------------------------------------------------


class ProjectStore(Protocol):
    def create_project(self, user_id: str, project_id: str, params: ProjectCreate) -> Project: ...
    def update_project(self, project_id: str, params: ProjectUpdate) -> Project: ...
    def delete_project(self, project_id: str) -> Project: ...
    def get_project(self, project_id: str) -> Project | None: ...
    def get_project_team(self, project_id: str) -> Project | None: ...
    def get_user(self, user_id: str) -> User | None: ...
    def get_user_projects(self, farcaster_id: str) -> list[UserProjects]: ...
    def get_user_projects_with_details(self, user_id: str) -> list[UserProjects]: ...

    def add_team_member(self, project_id: str, user_id: str, role: TeamRole = TeamRole.member) -> UserProjects: ...
    def add_team_members(self, project_id: str, user_ids: Sequence[str], role: TeamRole = TeamRole.member) -> int: ...
    def update_member_role(self, key: MembershipKey, role: TeamRole) -> UserProjects: ...
    def remove_team_member(self, key: MembershipKey) -> UserProjects: ...
    def verify_membership(self, project_id: str, user_id: str) -> UserProjects: ...

    def add_project_contract(self, project_id: str, params: ContractCreate) -> ProjectContract: ...
    def remove_project_contract(self, key: ContractKey) -> ProjectContract: ...
    def get_project_contracts(self, project_id: str, deployer_address: str) -> list[ProjectContract]: ...

    def add_project_repository(self, project_id: str, params: RepositoryCreate) -> ProjectRepository: ...
    def remove_project_repository(self, key: RepositoryKey) -> ProjectRepository: ...
    def update_project_repository(self, key: RepositoryKey, params: RepositoryUpdate) -> ProjectRepository: ...
    def update_project_repositories(
        self, project_id: str, type: str, repositories: Sequence[RepositoryCreate],
    ) -> ReplaceResult: ...
    def sync_project_repositories(
        self, project_id: str, type: str, url_prefix: str, repositories: Sequence[RepositoryCreate],
    ) -> ReplaceResult: ...

    def update_project_funding(self, project_id: str, funding: Sequence[FundingCreate]) -> ReplaceResult: ...
    def add_project_snapshot(self, project_id: str, ipfs_hash: str, attestation_id: str) -> ProjectSnapshot: ...
    def create_application(self, project_id: str, attestation_id: str, round: int) -> Application: ...
    def get_user_applications(self, user_id: str) -> list[UserProjects]: ...
    def get_project_rewards(self, project_id: str) -> list[ProjectReward]: ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


class SqlProjectStore:
    """``ProjectStore`` backed by a request-scoped SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    # -- projects -----------------------------------------------------------

    def create_project(self, user_id: str, project_id: str, params: ProjectCreate) -> Project:
        """Insert the project and its creator's admin membership as one unit."""
        with unit_of_work(self.session, "Project", project_id):
            if self.session.get(Project, project_id) is not None:
                raise ConflictError("Project", project_id)
            project = Project(id=project_id, **_project_columns(params.model_dump(exclude_none=True)))
            self.session.add(project)
            self.session.add(UserProjects(user_id=user_id, project=project, role=TeamRole.admin.value))
        log.info("Created project %s for user %s", project_id, user_id)
        return project

    def update_project(self, project_id: str, params: ProjectUpdate) -> Project:
        with unit_of_work(self.session, "Project", project_id):
            project = self.session.get(Project, project_id)
            if project is None:
                raise NotFoundError("Project", project_id)
            apply_updates(project, _project_columns(params.model_dump(exclude_none=True)))
        return project

    def delete_project(self, project_id: str) -> Project:
        """Soft delete: stamp ``deleted_at``; owned rows are left in place."""
        with unit_of_work(self.session, "Project", project_id):
            project = self.session.get(Project, project_id)
            if project is None:
                raise NotFoundError("Project", project_id)
            project.deleted_at = utc_now()
        log.info("Soft-deleted project %s", project_id)
        return project

    def get_project(self, project_id: str) -> Project | None:
        # No visibility filter: historical and admin views address deleted projects too
        stmt = (
            select(Project)
            .where(Project.id == project_id)
            .options(*_detail_options())
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalars().first()

    def get_project_team(self, project_id: str) -> Project | None:
        stmt = (
            select(Project)
            .where(Project.id == project_id)
            .options(selectinload(Project.team).selectinload(UserProjects.user))
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalars().first()

    def get_user(self, user_id: str) -> User | None:
        return self.session.get(User, user_id)

    def get_user_projects(self, farcaster_id: str) -> list[UserProjects]:
        stmt = only_active(
            select(UserProjects)
            .join(UserProjects.project)
            .join(UserProjects.user)
            .where(User.farcaster_id == farcaster_id)
            .options(selectinload(UserProjects.project))
            .order_by(UserProjects.id)
        )
        return list(self.session.execute(stmt.execution_options(populate_existing=True)).scalars().all())

    def get_user_projects_with_details(self, user_id: str) -> list[UserProjects]:
        stmt = only_active(
            select(UserProjects)
            .join(UserProjects.project)
            .where(UserProjects.user_id == user_id)
            .options(selectinload(UserProjects.project).options(*_detail_options()))
            .order_by(Project.created_at.asc())
        )
        return list(self.session.execute(stmt.execution_options(populate_existing=True)).scalars().all())

    # -- team ---------------------------------------------------------------

    def add_team_member(self, project_id: str, user_id: str, role: TeamRole = TeamRole.member) -> UserProjects:
        key = MembershipKey(user_id=user_id, project_id=project_id)
        with unit_of_work(self.session, "TeamMembership", key):
            membership = UserProjects(user_id=user_id, project_id=project_id, role=TeamRole(role).value)
            self.session.add(membership)
        log.debug("Added %s to project %s as %s", user_id, project_id, membership.role)
        return membership

    def add_team_members(
        self, project_id: str, user_ids: Sequence[str], role: TeamRole = TeamRole.member,
    ) -> int:
        with unit_of_work(self.session, "TeamMembership", project_id):
            self.session.add_all([
                UserProjects(user_id=uid, project_id=project_id, role=TeamRole(role).value)
                for uid in user_ids
            ])
        return len(user_ids)

    def _membership(self, key: MembershipKey) -> UserProjects | None:
        return self.session.execute(
            select(UserProjects).where(
                UserProjects.user_id == key.user_id,
                UserProjects.project_id == key.project_id,
            )
        ).scalars().first()

    def update_member_role(self, key: MembershipKey, role: TeamRole) -> UserProjects:
        with unit_of_work(self.session, "TeamMembership", key):
            membership = self._membership(key)
            if membership is None:
                raise NotFoundError("TeamMembership", key)
            membership.role = TeamRole(role).value
        return membership

    def remove_team_member(self, key: MembershipKey) -> UserProjects:
        with unit_of_work(self.session, "TeamMembership", key):
            membership = self._membership(key)
            if membership is None:
                raise NotFoundError("TeamMembership", key)
            self.session.delete(membership)
        log.debug("Removed %s from project %s", key.user_id, key.project_id)
        return membership

    def verify_membership(self, project_id: str, user_id: str) -> UserProjects:
        key = MembershipKey(user_id=user_id, project_id=project_id)
        membership = self._membership(key)
        if membership is None:
            raise NotFoundError("TeamMembership", key)
        return membership

    # -- contracts ----------------------------------------------------------

    def add_project_contract(self, project_id: str, params: ContractCreate) -> ProjectContract:
        key = ContractKey(project_id=project_id, address=params.contract_address, chain_id=params.chain_id)
        with unit_of_work(self.session, "ProjectContract", key):
            contract = ProjectContract(project_id=project_id, **params.model_dump())
            contract.contract_address = key.address
            self.session.add(contract)
        return contract

    def remove_project_contract(self, key: ContractKey) -> ProjectContract:
        with unit_of_work(self.session, "ProjectContract", key):
            contract = self.session.execute(
                select(ProjectContract).where(
                    ProjectContract.project_id == key.project_id,
                    ProjectContract.contract_address == key.address,
                    ProjectContract.chain_id == key.chain_id,
                )
            ).scalars().first()
            if contract is None:
                raise NotFoundError("ProjectContract", key)
            self.session.delete(contract)
        return contract

    def get_project_contracts(self, project_id: str, deployer_address: str) -> list[ProjectContract]:
        stmt = select(ProjectContract).where(
            ProjectContract.project_id == project_id,
            ProjectContract.deployer_address == deployer_address.strip().lower(),
        ).order_by(ProjectContract.id)
        return list(self.session.execute(stmt).scalars().all())

    # -- repositories -------------------------------------------------------

    def _repository(self, key: RepositoryKey) -> ProjectRepository | None:
        return self.session.execute(
            select(ProjectRepository).where(
                ProjectRepository.project_id == key.project_id,
                ProjectRepository.url == key.url,
            )
        ).scalars().first()

    def add_project_repository(self, project_id: str, params: RepositoryCreate) -> ProjectRepository:
        key = RepositoryKey(project_id=project_id, url=params.url)
        with unit_of_work(self.session, "ProjectRepository", key):
            repo = ProjectRepository(project_id=project_id, **params.model_dump())
            self.session.add(repo)
        return repo

    def remove_project_repository(self, key: RepositoryKey) -> ProjectRepository:
        with unit_of_work(self.session, "ProjectRepository", key):
            repo = self._repository(key)
            if repo is None:
                raise NotFoundError("ProjectRepository", key)
            self.session.delete(repo)
        return repo

    def update_project_repository(self, key: RepositoryKey, params: RepositoryUpdate) -> ProjectRepository:
        with unit_of_work(self.session, "ProjectRepository", key):
            repo = self._repository(key)
            if repo is None:
                raise NotFoundError("ProjectRepository", key)
            apply_updates(repo, params.model_dump(exclude_none=True))
        return repo

    def update_project_repositories(
        self, project_id: str, type: str, repositories: Sequence[RepositoryCreate],
    ) -> ReplaceResult:
        """Replace every repository of *type* for the project in one transaction.

        Repositories of other types are untouched. Incoming rows are stored
        with *type* whatever their own ``type`` says.
        """
        with unit_of_work(self.session, "ProjectRepository", project_id):
            removed = self.session.execute(
                delete(ProjectRepository).where(
                    ProjectRepository.project_id == project_id,
                    ProjectRepository.type == type,
                )
            ).rowcount
            self.session.add_all([
                ProjectRepository(project_id=project_id, **{**r.model_dump(), "type": type})
                for r in repositories
            ])
            self.session.flush()
        log.info("Replaced %s repositories of project %s: -%d +%d", type, project_id, removed, len(repositories))
        return ReplaceResult(removed=removed, created=len(repositories))

    def sync_project_repositories(
        self, project_id: str, type: str, url_prefix: str, repositories: Sequence[RepositoryCreate],
    ) -> ReplaceResult:
        """Replace the *type* repositories whose URL starts with *url_prefix*.

        Rows outside the prefix are untouched. User-set flags on an existing
        row carry over to the incoming row with the same URL.
        """
        scope = (
            ProjectRepository.project_id == project_id,
            ProjectRepository.type == type,
            func.lower(ProjectRepository.url).startswith(url_prefix.lower(), autoescape=True),
        )
        with unit_of_work(self.session, "ProjectRepository", project_id):
            existing = {
                r.url.lower(): r
                for r in self.session.execute(select(ProjectRepository).where(*scope)).scalars()
            }
            rows = []
            for repo in repositories:
                values = {**repo.model_dump(), "type": type}
                prior = existing.get(repo.url.lower())
                if prior is not None:
                    for flag in _CARRIED_FLAGS:
                        values[flag] = values[flag] or getattr(prior, flag)
                rows.append(ProjectRepository(project_id=project_id, **values))
            removed = self.session.execute(
                delete(ProjectRepository).where(*scope).execution_options(synchronize_session="fetch")
            ).rowcount
            self.session.add_all(rows)
            self.session.flush()
        log.info("Synced %s repositories under %s for project %s: -%d +%d",
                 type, url_prefix, project_id, removed, len(rows))
        return ReplaceResult(removed=removed, created=len(rows))

    # -- funding ------------------------------------------------------------

    def update_project_funding(self, project_id: str, funding: Sequence[FundingCreate]) -> ReplaceResult:
        """Replace the funding history and mark the project as funded, atomically."""
        with unit_of_work(self.session, "ProjectFunding", project_id):
            removed = self.session.execute(
                delete(ProjectFunding).where(ProjectFunding.project_id == project_id)
            ).rowcount
            self.session.add_all([ProjectFunding(project_id=project_id, **f.model_dump()) for f in funding])
            self.session.flush()
            flagged = self.session.execute(
                update(Project).where(Project.id == project_id).values(added_funding=True)
            ).rowcount
            if not flagged:
                raise NotFoundError("Project", project_id)
        log.info("Replaced funding of project %s: -%d +%d", project_id, removed, len(funding))
        return ReplaceResult(removed=removed, created=len(funding))

    # -- snapshots & applications ------------------------------------------

    def add_project_snapshot(self, project_id: str, ipfs_hash: str, attestation_id: str) -> ProjectSnapshot:
        with unit_of_work(self.session, "ProjectSnapshot", project_id):
            snapshot = ProjectSnapshot(project_id=project_id, ipfs_hash=ipfs_hash, attestation_id=attestation_id)
            self.session.add(snapshot)
        return snapshot

    def create_application(self, project_id: str, attestation_id: str, round: int) -> Application:
        round_id = str(round)
        with unit_of_work(self.session, "Application", (project_id, round_id)):
            application = Application(project_id=project_id, round_id=round_id, attestation_id=attestation_id)
            self.session.add(application)
        log.info("Project %s applied to round %s", project_id, round_id)
        return application

    def get_user_applications(self, user_id: str) -> list[UserProjects]:
        """Memberships of active projects, each project's applications newest first."""
        stmt = only_active(
            select(UserProjects)
            .join(UserProjects.project)
            .where(UserProjects.user_id == user_id)
            .options(selectinload(UserProjects.project).selectinload(Project.applications))
            .order_by(UserProjects.id)
        )
        return list(self.session.execute(stmt.execution_options(populate_existing=True)).scalars().all())

    # -- rewards ------------------------------------------------------------

    def get_project_rewards(self, project_id: str) -> list[ProjectReward]:
        stmt = select(ProjectReward).where(ProjectReward.project_id == project_id).order_by(
            ProjectReward.round_id, ProjectReward.id,
        )
        return list(self.session.execute(stmt).scalars().all())
