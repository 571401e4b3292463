"""Composite natural keys for project-owned rows.

Each key mirrors one uniqueness constraint in ``atlas.models``; equality and
hashing are by value so keys can be compared, deduplicated and used in sets.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MembershipKey:
    user_id: str
    project_id: str


@dataclass(frozen=True)
class RepositoryKey:
    project_id: str
    url: str


@dataclass(frozen=True)
class ContractKey:
    project_id: str
    address: str
    chain_id: int

    def __post_init__(self) -> None:
        # EVM addresses are hex; checksummed and lower-case forms are the same contract
        object.__setattr__(self, "address", self.address.strip().lower())
