"""Integration tests for the FastAPI surface.

Uses TestClient against an in-memory database shared through StaticPool.
"""
from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from atlas.db import create_db_engine, make_session_factory
from atlas.models import Application, Base, FundingRound, Project, ProjectReward, User
from atlas.schemas import RepositoryCreate


@pytest.fixture()
def test_db():
    engine = create_db_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    TestSession = make_session_factory(engine)
    session = TestSession()
    session.add_all([
        User(id="u1", farcaster_id="fc1", name="Alice", username="alice"),
        User(id="u2", farcaster_id="fc2", name="Bob", username="bob"),
        FundingRound(id="7", name="Dev Tooling"),
        FundingRound(id="8", name="Onchain Builders"),
    ])
    session.commit()
    session.close()
    return engine, TestSession


@pytest.fixture()
def client(test_db):
    """FastAPI TestClient using the in-memory database."""
    engine, TestSession = test_db
    from atlas.app import app, db_session

    def override_db_session():
        session = TestSession()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[db_session] = override_db_session
    with patch("atlas.app.init_db"), TestClient(app, raise_server_exceptions=True) as c:
        yield c, TestSession
    app.dependency_overrides.clear()


ALICE = {"X-User-Id": "u1"}
BOB = {"X-User-Id": "u2"}


@pytest.fixture()
def seeded_client(client):
    """Client with project p1 owned by Alice."""
    c, TestSession = client
    resp = c.post("/api/projects", json={"id": "p1", "name": "Atlas", "description": "Registry"}, headers=ALICE)
    assert resp.status_code == 201
    return c, TestSession


class TestProjectEndpoints:
    def test_create_requires_session(self, client):
        c, _ = client
        resp = c.post("/api/projects", json={"name": "X", "description": "d"})
        assert resp.status_code == 401

    def test_create_generates_id_and_admin(self, client):
        c, _ = client
        resp = c.post("/api/projects", json={"name": "X", "description": "d"}, headers=ALICE)
        assert resp.status_code == 201
        data = resp.json()
        assert data["id"]
        assert data["team"][0]["user_id"] == "u1"
        assert data["team"][0]["role"] == "admin"

    def test_create_duplicate_id_is_409(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/projects", json={"id": "p1", "name": "X", "description": "d"}, headers=BOB)
        assert resp.status_code == 409
        assert "detail" in resp.json()

    def test_create_for_unknown_user_is_422(self, client):
        c, TestSession = client
        resp = c.post("/api/projects", json={"id": "px", "name": "X", "description": "d"},
                      headers={"X-User-Id": "ghost"})
        assert resp.status_code == 422
        session = TestSession()
        assert session.get(Project, "px") is None
        session.close()

    def test_get_project_404(self, client):
        c, _ = client
        assert c.get("/api/projects/nope").status_code == 404

    def test_update_requires_membership(self, seeded_client):
        c, _ = seeded_client
        resp = c.put("/api/projects/p1", json={"category": "Tooling"}, headers=BOB)
        assert resp.status_code == 403
        resp = c.put("/api/projects/p1", json={"category": "Tooling"}, headers=ALICE)
        assert resp.status_code == 200
        assert resp.json()["category"] == "Tooling"
        assert resp.json()["name"] == "Atlas"

    def test_delete_hides_from_listing(self, seeded_client):
        c, _ = seeded_client
        assert c.delete("/api/projects/p1", headers=ALICE).json() == {"ok": True}
        assert c.get("/api/users/u1/projects").json() == []
        assert c.get("/api/farcaster/fc1/projects").json() == []
        assert c.get("/api/projects/p1").json()["deleted_at"] is not None


class TestTeamEndpoints:
    def test_add_update_remove_member(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/projects/p1/team", json={"user_id": "u2"}, headers=ALICE)
        assert resp.status_code == 201
        assert resp.json()["role"] == "member"
        resp = c.put("/api/projects/p1/team/u2", json={"role": "admin"}, headers=ALICE)
        assert resp.json()["role"] == "admin"
        assert c.delete("/api/projects/p1/team/u2", headers=ALICE).status_code == 200
        assert c.delete("/api/projects/p1/team/u2", headers=ALICE).status_code == 404

    def test_duplicate_member_is_409(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/projects/p1/team", json={"user_id": "u1"}, headers=ALICE)
        assert resp.status_code == 409

    def test_batch_add(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/projects/p1/team/batch", json={"user_ids": ["u2"]}, headers=ALICE)
        assert resp.json() == {"count": 1}
        team = c.get("/api/projects/p1/team").json()["team"]
        assert sorted(m["user_id"] for m in team) == ["u1", "u2"]


class TestContractEndpoints:
    def test_add_and_filter(self, seeded_client):
        c, _ = seeded_client
        body = {"contract_address": "0xABC", "chain_id": 10, "deployer_address": "0xDEF"}
        resp = c.post("/api/projects/p1/contracts", json=body, headers=ALICE)
        assert resp.status_code == 201
        assert resp.json()["contract_address"] == "0xabc"
        assert c.post("/api/projects/p1/contracts", json=body, headers=ALICE).status_code == 409
        found = c.get("/api/projects/p1/contracts", params={"deployer": "0xdef"}).json()
        assert [x["contract_address"] for x in found] == ["0xabc"]
        assert c.delete("/api/projects/p1/contracts/10/0xAbC", headers=ALICE).status_code == 200
        assert c.delete("/api/projects/p1/contracts/10/0xAbC", headers=ALICE).status_code == 404


class TestRepositoryEndpoints:
    def test_replace_by_type(self, seeded_client):
        c, _ = seeded_client
        c.post("/api/projects/p1/repos", json={"type": "package", "url": "https://npmjs.com/x"}, headers=ALICE)
        c.post("/api/projects/p1/repos", json={"type": "github", "url": "https://github.com/a/old"}, headers=ALICE)
        resp = c.put("/api/projects/p1/repos/github", headers=ALICE, json={"repositories": [
            {"type": "github", "url": "https://github.com/a/one"},
            {"type": "github", "url": "https://github.com/a/two"},
        ]})
        assert resp.json() == {"removed": 1, "created": 2}
        repos = c.get("/api/projects/p1").json()["repos"]
        assert sorted(r["url"] for r in repos) == [
            "https://github.com/a/one", "https://github.com/a/two", "https://npmjs.com/x",
        ]

    def test_update_and_remove_by_url(self, seeded_client):
        c, _ = seeded_client
        url = "https://github.com/a/one"
        c.post("/api/projects/p1/repos", json={"type": "github", "url": url}, headers=ALICE)
        resp = c.patch("/api/projects/p1/repos", params={"url": url}, json={"verified": True}, headers=ALICE)
        assert resp.json()["verified"] is True
        assert c.delete("/api/projects/p1/repos", params={"url": url}, headers=ALICE).status_code == 200
        assert c.delete("/api/projects/p1/repos", params={"url": url}, headers=ALICE).status_code == 404

    def test_github_sync_replaces_github_repos(self, seeded_client):
        c, _ = seeded_client
        fetched = [RepositoryCreate(type="github", url="https://github.com/acme/core", open_source=True)]
        with patch("atlas.app.fetch_owner_repositories", new_callable=AsyncMock, return_value=fetched) as mock_fetch:
            resp = c.post("/api/projects/p1/repos/github/sync",
                          json={"owner": "https://github.com/acme"}, headers=ALICE)
        assert resp.status_code == 200
        mock_fetch.assert_awaited_once_with("acme")
        assert resp.json() == {"removed": 0, "created": 1}

    def test_github_sync_keeps_other_owners_and_flags(self, seeded_client):
        c, _ = seeded_client
        c.post("/api/projects/p1/repos", headers=ALICE,
               json={"type": "github", "url": "https://github.com/other/lib", "verified": True})
        c.post("/api/projects/p1/repos", headers=ALICE, json={
            "type": "github", "url": "https://github.com/acme/core", "verified": True, "contains_contracts": True,
        })
        fetched = [RepositoryCreate(type="github", url="https://github.com/acme/core")]
        with patch("atlas.app.fetch_owner_repositories", new_callable=AsyncMock, return_value=fetched):
            resp = c.post("/api/projects/p1/repos/github/sync", json={"owner": "acme"}, headers=ALICE)
        assert resp.json() == {"removed": 1, "created": 1}
        repos = sorted(
            (r["url"], r["verified"], r["contains_contracts"]) for r in c.get("/api/projects/p1").json()["repos"]
        )
        assert repos == [("https://github.com/acme/core", True, True), ("https://github.com/other/lib", True, False)]

    def test_github_sync_empty_fetch_is_502(self, seeded_client):
        c, _ = seeded_client
        c.post("/api/projects/p1/repos", json={"type": "github", "url": "https://github.com/a/keep"}, headers=ALICE)
        with patch("atlas.app.fetch_owner_repositories", new_callable=AsyncMock, return_value=[]):
            resp = c.post("/api/projects/p1/repos/github/sync", json={"owner": "acme"}, headers=ALICE)
        assert resp.status_code == 502
        assert [r["url"] for r in c.get("/api/projects/p1").json()["repos"]] == ["https://github.com/a/keep"]


class TestFundingAndApplications:
    def test_replace_funding(self, seeded_client):
        c, _ = seeded_client
        resp = c.put("/api/projects/p1/funding", headers=ALICE, json={"funding": [
            {"type": "grant", "amount": "10000", "source": "Foundation"},
        ]})
        assert resp.json() == {"removed": 0, "created": 1}
        data = c.get("/api/projects/p1").json()
        assert data["added_funding"] is True
        assert data["funding"][0]["source"] == "Foundation"

    def test_snapshot_and_application(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/projects/p1/snapshots", json={"ipfs_hash": "bafy", "attestation_id": "a1"}, headers=ALICE)
        assert resp.status_code == 201
        resp = c.post("/api/projects/p1/applications", json={"attestation_id": "a2", "round": 7}, headers=ALICE)
        assert resp.status_code == 201
        assert resp.json()["round_id"] == "7"
        apps = c.get("/api/users/u1/applications").json()
        assert [a["attestation_id"] for a in apps[0]["applications"]] == ["a2"]

    def test_applications_cannot_be_changed_over_http(self):
        from atlas.app import app

        methods = set()
        for route in app.routes:
            if "/applications" in getattr(route, "path", ""):
                methods |= route.methods
        assert methods == {"GET", "POST"}

    def test_application_to_unknown_round_is_422(self, seeded_client):
        c, _ = seeded_client
        resp = c.post("/api/projects/p1/applications", json={"attestation_id": "a", "round": 42}, headers=ALICE)
        assert resp.status_code == 422


class TestRewards:
    def test_rewards_summary_and_months(self, seeded_client):
        c, TestSession = seeded_client
        session: Session = TestSession()
        session.add_all([
            ProjectReward(project_id="p1", round_id="7", amount=100.0),
            ProjectReward(project_id="p1", round_id="7", amount=50.0),
            ProjectReward(project_id="p1", round_id="8", amount=25.0),
            Application(project_id="p1", round_id="8", attestation_id="a",
                        created_at=datetime(2025, 4, 10)),
        ])
        session.commit()
        session.close()
        data = c.get("/api/projects/p1/rewards").json()
        assert data["summary"]["total"] == 175.0
        assert [(p["round_id"], p["amount"]) for p in data["summary"]["by_program"]] == [("7", 150.0), ("8", 25.0)]
        assert data["eligible_months"] == {"8": ["April", "May", "June", "July"]}


class TestPages:
    def test_dashboard_without_session_redirects_home(self, client):
        c, _ = client
        resp = c.get("/dashboard", follow_redirects=False)
        assert resp.status_code == 307
        assert resp.headers["location"] == "/"

    def test_dashboard_unknown_user_redirects_home(self, client):
        c, _ = client
        resp = c.get("/dashboard", headers={"X-User-Id": "ghost"}, follow_redirects=False)
        assert resp.headers["location"] == "/"

    def test_dashboard(self, seeded_client):
        c, _ = seeded_client
        data = c.get("/dashboard", headers=ALICE).json()
        assert data["user"]["id"] == "u1"
        assert [m["project"]["id"] for m in data["projects"]] == ["p1"]
        assert data["rewards"]["p1"] == {"total": 0.0, "by_program": []}

    def test_repos_page_redirects(self, seeded_client):
        c, _ = seeded_client
        for headers in ({}, BOB):
            resp = c.get("/projects/p1/repos", headers=headers, follow_redirects=False)
            assert resp.headers["location"] == "/dashboard"
        resp = c.get("/projects/missing/repos", headers=ALICE, follow_redirects=False)
        assert resp.headers["location"] == "/dashboard"

    def test_repos_page_checks_membership_before_loading(self, seeded_client):
        c, _ = seeded_client
        with patch("atlas.app.SqlProjectStore.get_project") as mock_get:
            resp = c.get("/projects/p1/repos", headers=BOB, follow_redirects=False)
        assert resp.headers["location"] == "/dashboard"
        mock_get.assert_not_called()

    def test_repos_page_for_member(self, seeded_client):
        c, _ = seeded_client
        resp = c.get("/projects/p1/repos", headers=ALICE)
        assert resp.status_code == 200
        assert resp.json()["id"] == "p1"
