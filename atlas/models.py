from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from atlas.utils import json_parse, utc_now


class Base(DeclarativeBase):
    pass


class TeamRole(str, Enum):
    admin = "admin"
    member = "member"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    farcaster_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(200))
    username: Mapped[str | None] = mapped_column(String(200))
    image_url: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    projects: Mapped[list[UserProjects]] = relationship("UserProjects", back_populates="user")


class FundingRound(Base):
    __tablename__ = "funding_rounds"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), default="")
    status: Mapped[str] = mapped_column(String(50), default="open")
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(String(100))
    thumbnail_url: Mapped[str | None] = mapped_column(String(500))
    banner_url: Mapped[str | None] = mapped_column(String(500))
    website_json: Mapped[str] = mapped_column(Text, default="[]")
    farcaster_json: Mapped[str] = mapped_column(Text, default="[]")
    twitter: Mapped[str | None] = mapped_column(String(500))
    mirror: Mapped[str | None] = mapped_column(String(500))
    open_source_observer_slug: Mapped[str | None] = mapped_column(String(200))
    added_team_members: Mapped[bool] = mapped_column(Boolean, default=False)
    added_funding: Mapped[bool] = mapped_column(Boolean, default=False)
    has_code_repositories: Mapped[bool] = mapped_column(Boolean, default=True)
    is_on_chain: Mapped[bool] = mapped_column(Boolean, default=True)
    last_metadata_update: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    team: Mapped[list[UserProjects]] = relationship("UserProjects", back_populates="project")
    repos: Mapped[list[ProjectRepository]] = relationship("ProjectRepository", back_populates="project")
    contracts: Mapped[list[ProjectContract]] = relationship("ProjectContract", back_populates="project")
    funding: Mapped[list[ProjectFunding]] = relationship("ProjectFunding", back_populates="project")
    snapshots: Mapped[list[ProjectSnapshot]] = relationship("ProjectSnapshot", back_populates="project")
    applications: Mapped[list[Application]] = relationship(
        "Application", back_populates="project",
        order_by="[Application.created_at.desc(), Application.id.desc()]",
    )
    rewards: Mapped[list[ProjectReward]] = relationship(
        "ProjectReward", back_populates="project", order_by="ProjectReward.round_id",
    )

    @property
    def website(self) -> list[str]:
        return json_parse(self.website_json, [])

    @property
    def farcaster(self) -> list[str]:
        return json_parse(self.farcaster_json, [])

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class UserProjects(Base):
    """Team membership: a (user, project) pair carrying a role."""

    __tablename__ = "user_projects"
    __table_args__ = (UniqueConstraint("user_id", "project_id", name="uq_user_projects_user_project"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    project_id: Mapped[str] = mapped_column(String(100), ForeignKey("projects.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=TeamRole.member.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    user: Mapped[User] = relationship("User", back_populates="projects")
    project: Mapped[Project] = relationship("Project", back_populates="team")


class ProjectRepository(Base):
    __tablename__ = "project_repositories"
    __table_args__ = (UniqueConstraint("project_id", "url", name="uq_project_repositories_project_url"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(100), ForeignKey("projects.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # "github" | "package" | ...
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    name: Mapped[str | None] = mapped_column(String(300))
    description: Mapped[str | None] = mapped_column(Text)
    verified: Mapped[bool] = mapped_column(Boolean, default=False)
    open_source: Mapped[bool] = mapped_column(Boolean, default=False)
    contains_contracts: Mapped[bool] = mapped_column(Boolean, default=False)
    npm_package: Mapped[bool] = mapped_column(Boolean, default=False)
    crate: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    project: Mapped[Project] = relationship("Project", back_populates="repos")


class ProjectContract(Base):
    __tablename__ = "project_contracts"
    __table_args__ = (
        UniqueConstraint("project_id", "contract_address", "chain_id", name="uq_project_contracts_address_chain"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(100), ForeignKey("projects.id"), nullable=False)
    contract_address: Mapped[str] = mapped_column(String(100), nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    deployer_address: Mapped[str] = mapped_column(String(100), nullable=False)
    deployment_hash: Mapped[str] = mapped_column(String(100), default="")
    verification_proof: Mapped[str] = mapped_column(Text, default="")
    name: Mapped[str | None] = mapped_column(String(300))
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    project: Mapped[Project] = relationship("Project", back_populates="contracts")


class ProjectFunding(Base):
    __tablename__ = "project_funding"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(100), ForeignKey("projects.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # "venture" | "grant" | "revenue" | ...
    source: Mapped[str] = mapped_column(String(300), default="")
    round: Mapped[str | None] = mapped_column(String(100))
    amount: Mapped[str] = mapped_column(String(100), nullable=False)
    received_at: Mapped[str] = mapped_column(String(50), default="")
    grant_url: Mapped[str | None] = mapped_column(String(500))
    details: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    project: Mapped[Project] = relationship("Project", back_populates="funding")


class ProjectSnapshot(Base):
    __tablename__ = "project_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(100), ForeignKey("projects.id"), nullable=False)
    ipfs_hash: Mapped[str] = mapped_column(String(200), nullable=False)
    attestation_id: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    project: Mapped[Project] = relationship("Project", back_populates="snapshots")


class Application(Base):
    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(100), ForeignKey("projects.id"), nullable=False)
    round_id: Mapped[str] = mapped_column(String(32), ForeignKey("funding_rounds.id"), nullable=False)
    attestation_id: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="submitted")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    project: Mapped[Project] = relationship("Project", back_populates="applications")
    round: Mapped[FundingRound] = relationship("FundingRound")


class ProjectReward(Base):
    __tablename__ = "project_rewards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(100), ForeignKey("projects.id"), nullable=False)
    round_id: Mapped[str] = mapped_column(String(32), ForeignKey("funding_rounds.id"), nullable=False)
    amount: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    project: Mapped[Project] = relationship("Project", back_populates="rewards")
