"""GitHub repository source for the repo-linking sync flow."""
from __future__ import annotations

import logging

import httpx

from atlas.config import get_settings
from atlas.schemas import RepositoryCreate

log = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
REPOSITORY_TYPE = "github"
_PER_PAGE = 100
_MAX_PAGES = 50


def _headers() -> dict[str, str]:
    settings = get_settings()
    headers = {"Accept": "application/vnd.github+json", "User-Agent": settings.user_agent}
    if settings.github_token:
        headers["Authorization"] = f"Bearer {settings.github_token}"
    return headers


async def _github_get(url: str, headers: dict[str, str]) -> tuple[int, dict | list | None, str | None]:
    """GET an API path or absolute URL; returns status, JSON body and the next-page URL."""
    if url.startswith("/"):
        url = f"{GITHUB_API}{url}"
    timeout = httpx.Timeout(get_settings().request_timeout_seconds)
    try:
        async with httpx.AsyncClient(timeout=timeout, headers=headers) as client:
            resp = await client.get(url)
            if resp.status_code >= 400:
                return resp.status_code, None, None
            return resp.status_code, resp.json(), resp.links.get("next", {}).get("url")
    except httpx.HTTPError as exc:
        log.debug("GitHub API request failed for %s: %s", url, exc)
        return 0, None, None


async def _list_all(path: str, headers: dict[str, str]) -> tuple[int, list[dict] | None]:
    """Every page of a listing; None unless all pages were read."""
    entries: list[dict] = []
    url: str | None = path
    for _ in range(_MAX_PAGES):
        status, data, url = await _github_get(url, headers)
        if status != 200 or not isinstance(data, list):
            return status, None
        entries.extend(data)
        if not url:
            return status, entries
    log.warning("GitHub listing %s has more than %d pages", path, _MAX_PAGES)
    return 0, None


def owner_url_prefix(owner: str) -> str:
    """URL prefix shared by every repository of *owner*."""
    return f"https://github.com/{owner}/"


def to_repository(entry: dict) -> RepositoryCreate:
    return RepositoryCreate(
        type=REPOSITORY_TYPE,
        url=entry["html_url"],
        name=entry.get("name"),
        description=entry.get("description"),
        open_source=bool(entry.get("license")),
    )


async def fetch_owner_repositories(owner: str) -> list[RepositoryCreate]:
    """Public, non-fork repositories of an org or user.

    Follows the ``Link`` header through every page. Returns an empty list
    when any page fails, so a partial listing never reaches the caller.
    """
    headers = _headers()
    query = f"?per_page={_PER_PAGE}&sort=updated&type=public"
    status, data = await _list_all(f"/orgs/{owner}/repos{query}", headers)
    if status == 404:
        # not an org, try as user
        status, data = await _list_all(f"/users/{owner}/repos{query}", headers)
    if data is None:
        log.warning("GitHub repositories unavailable for %s (status %s)", owner, status)
        return []
    repos = [to_repository(r) for r in data if r.get("html_url") and not r.get("fork")]
    log.info("Fetched %d GitHub repositories for %s", len(repos), owner)
    return repos
