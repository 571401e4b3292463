"""Pydantic request/response schemas for the Atlas store and API."""
from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from atlas.models import TeamRole

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class _ProjectFields(BaseModel):
    category: str | None = None
    thumbnail_url: str | None = None
    banner_url: str | None = None
    website: list[str] | None = None
    farcaster: list[str] | None = None
    twitter: str | None = None
    mirror: str | None = None
    open_source_observer_slug: str | None = None
    added_team_members: bool | None = None
    added_funding: bool | None = None
    has_code_repositories: bool | None = None
    is_on_chain: bool | None = None


class ProjectCreate(_ProjectFields):
    name: str = Field(min_length=1)
    description: str


class ProjectCreateRequest(ProjectCreate):
    # generated server-side when omitted
    id: str | None = None


class ProjectUpdate(_ProjectFields):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None


class TeamMemberAdd(BaseModel):
    user_id: str
    role: TeamRole = TeamRole.member


class TeamMembersAdd(BaseModel):
    user_ids: list[str]
    role: TeamRole = TeamRole.member


class RoleUpdate(BaseModel):
    role: TeamRole


class RepositoryCreate(BaseModel):
    type: str
    url: str
    name: str | None = None
    description: str | None = None
    verified: bool = False
    open_source: bool = False
    contains_contracts: bool = False
    npm_package: bool = False
    crate: bool = False


class RepositoryUpdate(BaseModel):
    type: str | None = None
    name: str | None = None
    description: str | None = None
    verified: bool | None = None
    open_source: bool | None = None
    contains_contracts: bool | None = None
    npm_package: bool | None = None
    crate: bool | None = None


class RepositoriesReplace(BaseModel):
    repositories: list[RepositoryCreate]


class ContractCreate(BaseModel):
    contract_address: str
    chain_id: int
    deployer_address: str
    deployment_hash: str = ""
    verification_proof: str = ""
    name: str | None = None
    description: str | None = None

    @field_validator("contract_address", "deployer_address")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        return v.strip().lower()


class FundingCreate(BaseModel):
    type: str
    amount: str
    source: str = ""
    round: str | None = None
    received_at: str = ""
    grant_url: str | None = None
    details: str | None = None


class FundingReplace(BaseModel):
    funding: list[FundingCreate]


class SnapshotCreate(BaseModel):
    ipfs_hash: str
    attestation_id: str


class ApplicationCreate(BaseModel):
    attestation_id: str
    round: int


class GithubSyncRequest(BaseModel):
    owner: str

    @field_validator("owner")
    @classmethod
    def owner_from_url(cls, v: str) -> str:
        v = v.strip()
        # accept a profile or repository URL, or owner/repo, as well as a bare owner
        if "github.com" in v:
            v = v.split("github.com")[-1]
        v = v.strip("/").split("/")[0].strip()
        if not v:
            raise ValueError("owner must not be empty")
        return v


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    id: str
    farcaster_id: str
    name: str | None = None
    username: str | None = None
    image_url: str | None = None


class TeamMemberOut(BaseModel):
    user_id: str
    project_id: str
    role: str
    user: UserOut | None = None


class RepositoryOut(BaseModel):
    id: int
    project_id: str
    type: str
    url: str
    name: str | None = None
    description: str | None = None
    verified: bool
    open_source: bool
    contains_contracts: bool
    npm_package: bool
    crate: bool


class ContractOut(BaseModel):
    id: int
    project_id: str
    contract_address: str
    chain_id: int
    deployer_address: str
    deployment_hash: str
    verification_proof: str
    name: str | None = None
    description: str | None = None


class FundingOut(BaseModel):
    id: int
    project_id: str
    type: str
    source: str
    round: str | None = None
    amount: str
    received_at: str
    grant_url: str | None = None
    details: str | None = None


class SnapshotOut(BaseModel):
    id: int
    project_id: str
    ipfs_hash: str
    attestation_id: str
    created_at: str


class ApplicationOut(BaseModel):
    id: int
    project_id: str
    round_id: str
    attestation_id: str
    status: str
    created_at: str


class RewardOut(BaseModel):
    id: int
    project_id: str
    round_id: str
    program: str | None = None
    amount: float


class ProjectOut(BaseModel):
    id: str
    name: str
    description: str
    category: str | None = None
    thumbnail_url: str | None = None
    banner_url: str | None = None
    website: list[str] = []
    farcaster: list[str] = []
    twitter: str | None = None
    mirror: str | None = None
    open_source_observer_slug: str | None = None
    added_team_members: bool
    added_funding: bool
    has_code_repositories: bool
    is_on_chain: bool
    created_at: str
    updated_at: str
    deleted_at: str | None = None


class ProjectDetail(ProjectOut):
    team: list[TeamMemberOut] = []
    repos: list[RepositoryOut] = []
    contracts: list[ContractOut] = []
    funding: list[FundingOut] = []
    snapshots: list[SnapshotOut] = []
    applications: list[ApplicationOut] = []


class ProjectTeamOut(ProjectOut):
    team: list[TeamMemberOut] = []


class MembershipOut(BaseModel):
    role: str
    project: ProjectOut


class MembershipDetail(BaseModel):
    role: str
    project: ProjectDetail


class ProjectApplications(BaseModel):
    project: ProjectOut
    applications: list[ApplicationOut]


class ReplaceResultOut(BaseModel):
    removed: int
    created: int


class ProgramRewards(BaseModel):
    round_id: str
    program: str
    amount: float


class RewardsSummary(BaseModel):
    total: float
    by_program: list[ProgramRewards]


class ProjectRewardsOut(BaseModel):
    items: list[RewardOut]
    summary: RewardsSummary
    eligible_months: dict[str, list[str]] = {}


class DashboardOut(BaseModel):
    user: UserOut
    projects: list[MembershipDetail]
    applications: list[ProjectApplications]
    rewards: dict[str, RewardsSummary]
