"""GitHub REST client for robotics org activity and SDK releases."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal

import httpx

from app.clients.upstream import UpstreamClient
from app.config import settings
from app.services.errors import UpstreamError, UpstreamSchemaError

logger = logging.getLogger(__name__)

TRACKED_ROBOTICS_ORGS: tuple[str, ...] = (
    "boston-dynamics",
    "agilityrobotics",
    "anduril",
    "Skydio",
    "NVIDIA",
    "ros2",
    "unitreerobotics",
    "google-deepmind",
    "facebookresearch",
    "openai",
    "teslamotors",
)

RELEASE_REPOS: tuple[tuple[str, str], ...] = (
    ("boston-dynamics", "spot-sdk"),
    ("ros2", "ros2"),
    ("NVIDIA", "Isaac"),
    ("NVIDIA", "isaac_ros_common"),
    ("google-deepmind", "mujoco"),
    ("openai", "gym"),
    ("facebookresearch", "habitat-lab"),
    ("unitreerobotics", "unitree_legged_sdk"),
)

_MAJOR_VERSION = re.compile(r"^v?\d+\.0(\.0)?$")
_EARLY_MAJOR = re.compile(r"^v?[12]\.0")


def is_major_release(version: str) -> bool:
    return bool(_MAJOR_VERSION.match(version) or _EARLY_MAJOR.match(version))


def classify_org_trend(this_week: int, last_week: int) -> Literal["up", "down", "stable"]:
    if this_week > last_week * 1.2:
        return "up"
    if this_week < last_week * 0.8:
        return "down"
    return "stable"


@dataclass(frozen=True)
class OrgActivity:
    org: str
    commits_week: int
    commits_previous_week: int
    commits_month: int
    trend: Literal["up", "down", "stable"]


@dataclass(frozen=True)
class ReleaseInfo:
    org: str
    repo: str
    version: str
    published_at: datetime
    url: str
    notes: str
    is_major: bool


class GitHubClient:
    """Minimal GitHub client; unauthenticated calls work with lower rate limits."""

    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        upstream: UpstreamClient | None = None,
    ) -> None:
        headers = {"Accept": "application/vnd.github.v3+json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._upstream = upstream or UpstreamClient(
            base_url or settings.github_api_base_url,
            name="github",
            headers=headers,
            http_client=http_client,
        )

    @classmethod
    def from_settings(cls) -> "GitHubClient":
        return cls(settings.github_token)

    async def aclose(self) -> None:
        await self._upstream.aclose()

    async def org_leaderboard(
        self, orgs: tuple[str, ...] = TRACKED_ROBOTICS_ORGS
    ) -> list[OrgActivity]:
        """Weekly commit activity for the top repos of each org.

        Orgs whose repos cannot be read are skipped; when every org fails the
        last error is raised. The result is sorted by this week's commits.
        """
        entries: list[OrgActivity] = []
        last_error: UpstreamError | None = None
        for org in orgs:
            try:
                entries.append(await self._org_activity(org))
            except UpstreamError as exc:
                last_error = exc
                logger.warning("github.org_skipped", extra={"org": org, "code": exc.code})
        if not entries and last_error is not None:
            raise last_error
        entries.sort(key=lambda entry: entry.commits_week, reverse=True)
        return entries

    async def _org_activity(self, org: str) -> OrgActivity:
        repos = await self._upstream.get_json(
            f"/orgs/{org}/repos",
            params={"sort": "pushed", "direction": "desc", "per_page": 10},
        )
        if not isinstance(repos, list):
            raise UpstreamSchemaError("GitHub repos payload must be a list.")
        top = sorted(repos, key=lambda repo: repo.get("stargazers_count") or 0, reverse=True)[:3]
        this_week = previous_week = month = 0
        for repo in top:
            weeks = await self._commit_activity(org, repo.get("name", ""))
            if not weeks:
                continue
            this_week += int(weeks[-1].get("total") or 0)
            if len(weeks) >= 2:
                previous_week += int(weeks[-2].get("total") or 0)
            month += sum(int(week.get("total") or 0) for week in weeks[-4:])
        return OrgActivity(
            org=org,
            commits_week=this_week,
            commits_previous_week=previous_week,
            commits_month=month,
            trend=classify_org_trend(this_week, previous_week),
        )

    async def _commit_activity(self, org: str, repo: str) -> list[dict]:
        response = await self._upstream.request("GET", f"/repos/{org}/{repo}/stats/commit_activity")
        # 202 means GitHub is still computing the statistics.
        if response.status_code == 202:
            return []
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamSchemaError("GitHub commit activity is not JSON.") from exc
        return payload if isinstance(payload, list) else []

    async def recent_releases(
        self,
        days: int = 30,
        *,
        repos: tuple[tuple[str, str], ...] = RELEASE_REPOS,
        now: datetime | None = None,
    ) -> list[ReleaseInfo]:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        releases: list[ReleaseInfo] = []
        failures = 0
        last_error: UpstreamError | None = None
        for org, repo in repos:
            try:
                payload = await self._upstream.get_json(
                    f"/repos/{org}/{repo}/releases", params={"per_page": 5}
                )
            except UpstreamError as exc:
                failures += 1
                last_error = exc
                logger.warning(
                    "github.releases_skipped",
                    extra={"org": org, "repo": repo, "code": exc.code},
                )
                continue
            for release in payload if isinstance(payload, list) else []:
                published_raw = release.get("published_at")
                if not published_raw:
                    continue
                published = datetime.fromisoformat(published_raw.replace("Z", "+00:00"))
                if published < cutoff:
                    continue
                version = release.get("tag_name") or release.get("name") or ""
                notes = (release.get("body") or "").replace("\r\n", "\n").split("\n")[0]
                releases.append(
                    ReleaseInfo(
                        org=org,
                        repo=repo,
                        version=version,
                        published_at=published,
                        url=release.get("html_url") or "",
                        notes=notes[:200],
                        is_major=is_major_release(version),
                    )
                )
        if repos and failures == len(repos) and last_error is not None:
            raise last_error
        releases.sort(key=lambda item: item.published_at, reverse=True)
        return releases
