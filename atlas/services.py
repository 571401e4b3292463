"""Serialization helpers shared by the Atlas API routes."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from atlas.models import (
    Application,
    Project,
    ProjectContract,
    ProjectFunding,
    ProjectRepository,
    ProjectReward,
    ProjectSnapshot,
    User,
    UserProjects,
)
from atlas.rewards import program_name

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

PROJECT_FIELDS = (
    "id", "name", "description", "category", "thumbnail_url", "banner_url",
    "twitter", "mirror", "open_source_observer_slug", "added_team_members",
    "added_funding", "has_code_repositories", "is_on_chain",
)

REPOSITORY_FIELDS = (
    "id", "project_id", "type", "url", "name", "description", "verified",
    "open_source", "contains_contracts", "npm_package", "crate",
)

CONTRACT_FIELDS = (
    "id", "project_id", "contract_address", "chain_id", "deployer_address",
    "deployment_hash", "verification_proof", "name", "description",
)

FUNDING_FIELDS = (
    "id", "project_id", "type", "source", "round", "amount", "received_at",
    "grant_url", "details",
)

USER_FIELDS = ("id", "farcaster_id", "name", "username", "image_url")


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _pick(obj: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    return {f: getattr(obj, f) for f in fields}


# ---------------------------------------------------------------------------
# Row serializers
# ---------------------------------------------------------------------------


def user_summary(user: User) -> dict:
    return _pick(user, USER_FIELDS)


def member_summary(membership: UserProjects, with_user: bool = True) -> dict:
    return {
        "user_id": membership.user_id, "project_id": membership.project_id,
        "role": membership.role,
        "user": user_summary(membership.user) if with_user and membership.user else None,
    }


def repository_summary(repo: ProjectRepository) -> dict:
    return _pick(repo, REPOSITORY_FIELDS)


def contract_summary(contract: ProjectContract) -> dict:
    return _pick(contract, CONTRACT_FIELDS)


def funding_summary(row: ProjectFunding) -> dict:
    return _pick(row, FUNDING_FIELDS)


def snapshot_summary(snapshot: ProjectSnapshot) -> dict:
    return {
        "id": snapshot.id, "project_id": snapshot.project_id,
        "ipfs_hash": snapshot.ipfs_hash, "attestation_id": snapshot.attestation_id,
        "created_at": _iso(snapshot.created_at),
    }


def application_summary(app: Application) -> dict:
    return {
        "id": app.id, "project_id": app.project_id, "round_id": app.round_id,
        "attestation_id": app.attestation_id, "status": app.status,
        "created_at": _iso(app.created_at),
    }


def reward_summary(reward: ProjectReward) -> dict:
    return {
        "id": reward.id, "project_id": reward.project_id, "round_id": reward.round_id,
        "program": program_name(reward.round_id), "amount": reward.amount,
    }


# ---------------------------------------------------------------------------
# Project serializers
# ---------------------------------------------------------------------------


def project_summary(proj: Project) -> dict:
    return {
        **_pick(proj, PROJECT_FIELDS),
        "website": proj.website, "farcaster": proj.farcaster,
        "created_at": _iso(proj.created_at), "updated_at": _iso(proj.updated_at),
        "deleted_at": _iso(proj.deleted_at),
    }


def project_team(proj: Project) -> dict:
    base = project_summary(proj)
    base["team"] = [member_summary(m) for m in proj.team]
    return base


def project_detail(proj: Project) -> dict:
    base = project_team(proj)
    base.update({
        "repos": [repository_summary(r) for r in proj.repos],
        "contracts": [contract_summary(c) for c in proj.contracts],
        "funding": [funding_summary(f) for f in proj.funding],
        "snapshots": [snapshot_summary(s) for s in proj.snapshots],
        "applications": [application_summary(a) for a in proj.applications],
    })
    return base


def membership_summary(membership: UserProjects) -> dict:
    return {"role": membership.role, "project": project_summary(membership.project)}


def membership_detail(membership: UserProjects) -> dict:
    return {"role": membership.role, "project": project_detail(membership.project)}


def project_applications(membership: UserProjects) -> dict:
    proj = membership.project
    return {
        "project": project_summary(proj),
        "applications": [application_summary(a) for a in proj.applications],
    }
