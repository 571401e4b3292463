from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Generator
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from atlas import services
from atlas.config import get_settings
from atlas.db import get_session, init_db
from atlas.errors import ConflictError, DataAccessError, NotFoundError, ReferentialError
from atlas.github import REPOSITORY_TYPE, fetch_owner_repositories, owner_url_prefix
from atlas.keys import ContractKey, MembershipKey, RepositoryKey
from atlas.rewards import PROGRAMS, eligible_months, rewards_summary
from atlas.schemas import (
    ApplicationCreate,
    ApplicationOut,
    ContractCreate,
    ContractOut,
    DashboardOut,
    FundingReplace,
    GithubSyncRequest,
    MembershipDetail,
    MembershipOut,
    ProjectApplications,
    ProjectCreate,
    ProjectCreateRequest,
    ProjectDetail,
    ProjectOut,
    ProjectRewardsOut,
    ProjectTeamOut,
    ProjectUpdate,
    RepositoriesReplace,
    RepositoryCreate,
    RepositoryOut,
    RepositoryUpdate,
    ReplaceResultOut,
    RoleUpdate,
    SnapshotCreate,
    SnapshotOut,
    TeamMemberAdd,
    TeamMemberOut,
    TeamMembersAdd,
)
from atlas.store import SqlProjectStore

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Atlas",
    version="0.1.0",
    description=(
        "Project registry for Retro Funding. Manage projects, their team, "
        "repositories, contracts, funding history, snapshots and round applications. "
        "The authenticating proxy passes the signed-in user as the X-User-Id header."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Pages", "description": "Page-level reads with session and membership redirects."},
        {"name": "Projects", "description": "Create, update, soft-delete and fetch projects."},
        {"name": "Team", "description": "Project team membership and roles."},
        {"name": "Contracts", "description": "On-chain contracts linked to a project."},
        {"name": "Repositories", "description": "Code repositories and packages linked to a project."},
        {"name": "Funding", "description": "Funding history of a project."},
        {"name": "Applications", "description": "Snapshots and funding-round applications."},
        {"name": "Rewards", "description": "Retro Funding rewards earned by a project."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_store(session: Session = Depends(db_session)) -> SqlProjectStore:
    return SqlProjectStore(session)


def current_user_id(x_user_id: str | None = Header(None)) -> str | None:
    return x_user_id or None


def require_user(user_id: str | None = Depends(current_user_id)) -> str:
    if not user_id:
        raise HTTPException(401, "Not authenticated")
    return user_id


def _require_member(store: SqlProjectStore, project_id: str, user_id: str) -> None:
    try:
        store.verify_membership(project_id, user_id)
    except NotFoundError:
        raise HTTPException(403, "Not a member of this project") from None


def _error_response(status_code: int):
    async def handler(request: Request, exc: DataAccessError) -> JSONResponse:
        log.info("%s %s -> %d (%s)", request.method, request.url.path, status_code, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


app.add_exception_handler(NotFoundError, _error_response(404))
app.add_exception_handler(ConflictError, _error_response(409))
app.add_exception_handler(ReferentialError, _error_response(422))
app.add_exception_handler(DataAccessError, _error_response(400))


# ---------------------------------------------------------------------------
# Routes: Pages
# ---------------------------------------------------------------------------


@app.get("/", include_in_schema=False)
async def root():
    return {"name": "Atlas", "docs_url": "/docs"}


@app.get("/dashboard", response_model=DashboardOut, tags=["Pages"],
         summary="Signed-in user's projects, applications and rewards")
async def dashboard(user_id: str | None = Depends(current_user_id), store: SqlProjectStore = Depends(get_store)):
    if not user_id:
        return RedirectResponse("/")
    user = store.get_user(user_id)
    if user is None:
        return RedirectResponse("/")
    projects = store.get_user_projects_with_details(user_id)
    applications = store.get_user_applications(user_id)
    rewards = {
        m.project_id: rewards_summary(store.get_project_rewards(m.project_id))
        for m in projects
    }
    return {
        "user": services.user_summary(user),
        "projects": [services.membership_detail(m) for m in projects],
        "applications": [services.project_applications(m) for m in applications],
        "rewards": rewards,
    }


@app.get("/projects/{project_id}/repos", response_model=ProjectDetail, tags=["Pages"],
         summary="Repository form data for a project the user belongs to")
async def project_repos_page(
    project_id: str,
    user_id: str | None = Depends(current_user_id),
    store: SqlProjectStore = Depends(get_store),
):
    if not user_id:
        return RedirectResponse("/dashboard")
    try:
        store.verify_membership(project_id, user_id)
    except NotFoundError:
        return RedirectResponse("/dashboard")
    project = store.get_project(project_id)
    if project is None:
        return RedirectResponse("/dashboard")
    return services.project_detail(project)


# ---------------------------------------------------------------------------
# Routes: Users
# ---------------------------------------------------------------------------


@app.get("/api/users/{user_id}/projects", response_model=list[MembershipDetail],
         tags=["Projects"], summary="Active projects of a user with full detail, oldest first")
async def list_user_projects(user_id: str, store: SqlProjectStore = Depends(get_store)):
    return [services.membership_detail(m) for m in store.get_user_projects_with_details(user_id)]


@app.get("/api/farcaster/{farcaster_id}/projects", response_model=list[MembershipOut],
         tags=["Projects"], summary="Active projects of a user looked up by Farcaster id")
async def list_farcaster_projects(farcaster_id: str, store: SqlProjectStore = Depends(get_store)):
    return [services.membership_summary(m) for m in store.get_user_projects(farcaster_id)]


@app.get("/api/users/{user_id}/applications", response_model=list[ProjectApplications],
         tags=["Applications"], summary="Applications of each active project of a user, newest first")
async def list_user_applications(user_id: str, store: SqlProjectStore = Depends(get_store)):
    return [services.project_applications(m) for m in store.get_user_applications(user_id)]


# ---------------------------------------------------------------------------
# Routes: Projects
# ---------------------------------------------------------------------------


@app.post("/api/projects", response_model=ProjectDetail, status_code=201,
          tags=["Projects"], summary="Create a project with the signed-in user as admin")
async def create_project(
    body: ProjectCreateRequest,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    project_id = body.id or str(uuid4())
    params = ProjectCreate(**body.model_dump(exclude={"id"}))
    store.create_project(user_id, project_id, params)
    return services.project_detail(store.get_project(project_id))


@app.get("/api/projects/{project_id}", response_model=ProjectDetail,
         tags=["Projects"], summary="Get a project with team, repos, contracts, funding, snapshots and applications")
async def get_project(project_id: str, store: SqlProjectStore = Depends(get_store)):
    project = store.get_project(project_id)
    if project is None:
        raise HTTPException(404, "Project not found")
    return services.project_detail(project)


@app.put("/api/projects/{project_id}", response_model=ProjectOut,
         tags=["Projects"], summary="Update project fields (partial update, null fields ignored)")
async def update_project(
    project_id: str,
    body: ProjectUpdate,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    return services.project_summary(store.update_project(project_id, body))


@app.delete("/api/projects/{project_id}", tags=["Projects"], summary="Soft-delete a project")
async def delete_project(
    project_id: str,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    store.delete_project(project_id)
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Team
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/team", response_model=ProjectTeamOut,
         tags=["Team"], summary="Get a project with its team members")
async def get_project_team(project_id: str, store: SqlProjectStore = Depends(get_store)):
    project = store.get_project_team(project_id)
    if project is None:
        raise HTTPException(404, "Project not found")
    return services.project_team(project)


@app.post("/api/projects/{project_id}/team", response_model=TeamMemberOut, status_code=201,
          tags=["Team"], summary="Add one team member")
async def add_team_member(
    project_id: str,
    body: TeamMemberAdd,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    membership = store.add_team_member(project_id, body.user_id, body.role)
    return services.member_summary(membership, with_user=False)


@app.post("/api/projects/{project_id}/team/batch", status_code=201,
          tags=["Team"], summary="Add several team members with the same role")
async def add_team_members(
    project_id: str,
    body: TeamMembersAdd,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    return {"count": store.add_team_members(project_id, body.user_ids, body.role)}


@app.put("/api/projects/{project_id}/team/{member_id}", response_model=TeamMemberOut,
         tags=["Team"], summary="Change a team member's role")
async def update_member_role(
    project_id: str,
    member_id: str,
    body: RoleUpdate,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    membership = store.update_member_role(MembershipKey(user_id=member_id, project_id=project_id), body.role)
    return services.member_summary(membership, with_user=False)


@app.delete("/api/projects/{project_id}/team/{member_id}", tags=["Team"], summary="Remove a team member")
async def remove_team_member(
    project_id: str,
    member_id: str,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    store.remove_team_member(MembershipKey(user_id=member_id, project_id=project_id))
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Contracts
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/contracts", response_model=list[ContractOut],
         tags=["Contracts"], summary="List a project's contracts deployed by an address")
async def list_contracts(
    project_id: str,
    deployer: str = Query(..., description="Deployer address"),
    store: SqlProjectStore = Depends(get_store),
):
    return [services.contract_summary(c) for c in store.get_project_contracts(project_id, deployer)]


@app.post("/api/projects/{project_id}/contracts", response_model=ContractOut, status_code=201,
          tags=["Contracts"], summary="Link a contract to a project")
async def add_contract(
    project_id: str,
    body: ContractCreate,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    return services.contract_summary(store.add_project_contract(project_id, body))


@app.delete("/api/projects/{project_id}/contracts/{chain_id}/{address}",
            tags=["Contracts"], summary="Unlink a contract by chain and address")
async def remove_contract(
    project_id: str,
    chain_id: int,
    address: str,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    store.remove_project_contract(ContractKey(project_id=project_id, address=address, chain_id=chain_id))
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Repositories (fixed paths before parameterized to avoid shadowing)
# ---------------------------------------------------------------------------


@app.post("/api/projects/{project_id}/repos", response_model=RepositoryOut, status_code=201,
          tags=["Repositories"], summary="Link one repository")
async def add_repository(
    project_id: str,
    body: RepositoryCreate,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    return services.repository_summary(store.add_project_repository(project_id, body))


@app.patch("/api/projects/{project_id}/repos", response_model=RepositoryOut,
           tags=["Repositories"], summary="Update a repository identified by URL (partial update)")
async def update_repository(
    project_id: str,
    body: RepositoryUpdate,
    url: str = Query(..., description="Repository URL"),
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    repo = store.update_project_repository(RepositoryKey(project_id=project_id, url=url), body)
    return services.repository_summary(repo)


@app.delete("/api/projects/{project_id}/repos", tags=["Repositories"],
            summary="Unlink a repository identified by URL")
async def remove_repository(
    project_id: str,
    url: str = Query(..., description="Repository URL"),
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    store.remove_project_repository(RepositoryKey(project_id=project_id, url=url))
    return {"ok": True}


@app.post("/api/projects/{project_id}/repos/github/sync", response_model=ReplaceResultOut,
          tags=["Repositories"], summary="Sync an owner's public GitHub repositories, keeping flags set on linked ones")
async def sync_github_repositories(
    project_id: str,
    body: GithubSyncRequest,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    repos = await fetch_owner_repositories(body.owner)
    if not repos:
        raise HTTPException(502, f"No GitHub repositories fetched for {body.owner}")
    result = store.sync_project_repositories(project_id, REPOSITORY_TYPE, owner_url_prefix(body.owner), repos)
    return {"removed": result.removed, "created": result.created}


@app.put("/api/projects/{project_id}/repos/{repo_type}", response_model=ReplaceResultOut,
         tags=["Repositories"], summary="Replace every repository of a type in one transaction")
async def replace_repositories(
    project_id: str,
    repo_type: str,
    body: RepositoriesReplace,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    result = store.update_project_repositories(project_id, repo_type, body.repositories)
    return {"removed": result.removed, "created": result.created}


# ---------------------------------------------------------------------------
# Routes: Funding
# ---------------------------------------------------------------------------


@app.put("/api/projects/{project_id}/funding", response_model=ReplaceResultOut,
         tags=["Funding"], summary="Replace the funding history and mark the project as funded")
async def replace_funding(
    project_id: str,
    body: FundingReplace,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    result = store.update_project_funding(project_id, body.funding)
    return {"removed": result.removed, "created": result.created}


# ---------------------------------------------------------------------------
# Routes: Snapshots & Applications
# ---------------------------------------------------------------------------


@app.post("/api/projects/{project_id}/snapshots", response_model=SnapshotOut, status_code=201,
          tags=["Applications"], summary="Record a metadata snapshot and its attestation")
async def add_snapshot(
    project_id: str,
    body: SnapshotCreate,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    snapshot = store.add_project_snapshot(project_id, body.ipfs_hash, body.attestation_id)
    return services.snapshot_summary(snapshot)


@app.post("/api/projects/{project_id}/applications", response_model=ApplicationOut, status_code=201,
          tags=["Applications"], summary="Apply to a funding round")
async def create_application(
    project_id: str,
    body: ApplicationCreate,
    user_id: str = Depends(require_user),
    store: SqlProjectStore = Depends(get_store),
):
    _require_member(store, project_id, user_id)
    application = store.create_application(project_id, body.attestation_id, body.round)
    return services.application_summary(application)


# ---------------------------------------------------------------------------
# Routes: Rewards
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/rewards", response_model=ProjectRewardsOut,
         tags=["Rewards"], summary="Rewards earned by a project and the months it is enrolled in")
async def get_project_rewards(project_id: str, store: SqlProjectStore = Depends(get_store)):
    project = store.get_project(project_id)
    if project is None:
        raise HTTPException(404, "Project not found")
    rewards = store.get_project_rewards(project_id)
    # applications are newest first, so the last one seen per round is the earliest
    first_applied = {a.round_id: a.created_at for a in project.applications if a.round_id in PROGRAMS}
    return {
        "items": [services.reward_summary(r) for r in rewards],
        "summary": rewards_summary(rewards),
        "eligible_months": {rid: eligible_months(applied) for rid, applied in first_applied.items()},
    }


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    uvicorn.run("atlas.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
