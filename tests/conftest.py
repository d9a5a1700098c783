"""Pytest configuration and fixtures."""

import asyncio
import json
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import git
import httpx
import pytest
from git import Actor

from contrib_attribution.config import PipelineConfig
from contrib_attribution.github.client import GitHubClient


# 2024-01-01T10:00:00Z
BASE_TIMESTAMP = 1704103200

ALICE = ("Alice Smith", "alice@example.com")
BOB = ("Bob Jones", "bob@example.com")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


class RepoBuilder:
    """Builds a local repository commit by commit with fixed authors and dates.

    Each commit is one hour after the previous one.
    """

    def __init__(self, path: Path):
        self.path = path
        self.repo = git.Repo.init(path)
        self.timestamp = BASE_TIMESTAMP

    def write(self, name: str, content) -> Path:
        """Write a file into the working tree without staging it."""
        target = self.path / name
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content)
        return target

    def next_date(self) -> str:
        self.timestamp += 3600
        return f"{self.timestamp} +0000"

    def date_of(self, commit: git.Commit) -> datetime:
        return datetime.fromtimestamp(commit.committed_date, tz=timezone.utc)

    def commit(
        self,
        files: Optional[Dict[str, Any]] = None,
        author: Tuple[str, str] = ALICE,
        message: str = "Update files",
        remove: Iterable[str] = (),
        parents: Optional[List[git.Commit]] = None,
        head: bool = True,
    ) -> git.Commit:
        for name, content in (files or {}).items():
            self.write(name, content)
            self.repo.index.add([name])
        removed = list(remove)
        if removed:
            self.repo.index.remove(removed, working_tree=True)

        actor = Actor(*author)
        date = self.next_date()
        return self.repo.index.commit(
            message,
            parent_commits=parents,
            head=head,
            author=actor,
            committer=actor,
            author_date=date,
            commit_date=date,
        )

    def merge(self, other: git.Commit, author: Tuple[str, str] = ALICE) -> git.Commit:
        """Record a merge of ``other`` into HEAD."""
        return self.commit(
            author=author,
            message=f"Merge {other.hexsha[:7]}",
            parents=[self.repo.head.commit, other],
        )


@pytest.fixture
def repo_builder(temp_dir):
    """Empty repository wrapped in a RepoBuilder."""
    return RepoBuilder(temp_dir / "repo")


@pytest.fixture
def sample_repo(repo_builder):
    """Repository with two authors, a binary file and a merge commit."""
    builder = repo_builder
    builder.commit(
        {
            "app.py": "import os\n\n\ndef main():\n    return os.getcwd()\n",
            "README.md": "# Sample\n\nA sample repository.\n",
        },
        author=ALICE,
        message="Initial commit",
    )
    builder.commit(
        {"logo.png": b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x01\x00\x00"},
        author=ALICE,
        message="Add logo",
    )
    side = builder.commit(
        {"util.py": "def helper(value):\n    return value * 2\n"},
        author=BOB,
        message="Add helper",
        parents=[builder.repo.head.commit],
        head=False,
    )
    builder.commit(
        {"app.py": "import os\n\n\ndef main():\n    return os.getcwd()\n\n\nVERSION = '1.0'\n"},
        author=BOB,
        message="Add version",
    )
    builder.merge(side, author=ALICE)
    return builder


def no_sleep_recorder():
    """Async sleep replacement that records requested delays."""
    delays: List[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def no_sleep():
    return no_sleep_recorder()


@pytest.fixture
def pipeline_settings():
    """Pipeline limits with pacing delays disabled."""
    return PipelineConfig(page_delay_ms=0, batch_delay_ms=0)


def make_sha(index: int) -> str:
    return f"{index + 1:040x}"


def make_commit_item(
    index: int,
    author: Tuple[str, str] = ALICE,
    login: Optional[str] = "alice",
    parents: int = 1,
    timestamp: Optional[int] = None,
) -> Dict[str, Any]:
    """A commit as returned by the commit listing endpoint (no stats)."""
    date = datetime.fromtimestamp((timestamp or BASE_TIMESTAMP) - index * 60, tz=timezone.utc)
    return {
        "sha": make_sha(index),
        "commit": {
            "author": {"name": author[0], "email": author[1], "date": date.isoformat().replace("+00:00", "Z")},
            "committer": {"name": author[0], "email": author[1], "date": date.isoformat().replace("+00:00", "Z")},
            "message": f"Commit {index}\n\nBody",
        },
        "author": {
            "login": login,
            "id": sum(map(ord, login)),
            "avatar_url": f"https://avatars.githubusercontent.com/{login}",
        } if login else None,
        "parents": [{"sha": make_sha(10_000 + index + p)} for p in range(parents)],
    }


class FakeGitHub:
    """In-memory GitHub REST API served through ``httpx.MockTransport``."""

    def __init__(
        self,
        commits: Optional[List[Dict[str, Any]]] = None,
        remaining: int = 5000,
        owner: str = "octo",
        repo: str = "widgets",
    ):
        self.commits = commits or []
        self.remaining = remaining
        self.reset = int(datetime.now(timezone.utc).timestamp()) + 1800
        self.prefix = f"/repos/{owner}/{repo}"
        self.pulls: List[Dict[str, Any]] = []
        self.issues: List[Dict[str, Any]] = []
        self.contributors: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.page_delays: Dict[int, float] = {}
        self.detail_status: Dict[str, int] = {}
        self.on_request: Optional[Callable[[httpx.Request], None]] = None

    @property
    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def listing_pages(self) -> List[int]:
        return [
            int(r.url.params["page"]) for r in self.requests if r.url.path == f"{self.prefix}/commits"
        ]

    def detail_requests(self) -> List[str]:
        return [p for p in self.paths if p.startswith(f"{self.prefix}/commits/")]

    def client(self, token: Optional[str] = "test-token", sleep=None) -> GitHubClient:
        return GitHubClient(
            token,
            base_url="https://api.github.com",
            max_retries=0,
            transport=httpx.MockTransport(self.handler),
            sleep=sleep or no_sleep_recorder(),
        )

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(request)

        path = request.url.path
        if path == "/rate_limit":
            return self._json({
                "resources": {"core": {"limit": 5000, "remaining": self.remaining, "reset": self.reset}},
                "rate": {"limit": 5000, "remaining": self.remaining, "reset": self.reset},
            })
        if path == f"{self.prefix}/commits":
            page = int(request.url.params.get("page", 1))
            if page in self.page_delays:
                await asyncio.sleep(self.page_delays[page])
            return self._page(request, self.commits, page)
        if path.startswith(f"{self.prefix}/commits/"):
            return self._detail(path.rsplit("/", 1)[-1])
        if path == f"{self.prefix}/pulls":
            return self._page(request, self.pulls, int(request.url.params.get("page", 1)))
        if path == f"{self.prefix}/issues":
            return self._page(request, self.issues, int(request.url.params.get("page", 1)))
        if path == f"{self.prefix}/contributors":
            return self._page(request, self.contributors, int(request.url.params.get("page", 1)))
        return self._json({"message": "Not Found"}, status_code=404)

    def _headers(self) -> Dict[str, str]:
        return {
            "x-ratelimit-limit": "5000",
            "x-ratelimit-remaining": str(self.remaining),
            "x-ratelimit-reset": str(self.reset),
        }

    def _json(self, body: Any, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        merged = self._headers()
        merged.update(headers or {})
        merged["content-type"] = "application/json"
        return httpx.Response(status_code, content=json.dumps(body).encode(), headers=merged)

    def _page(self, request: httpx.Request, items: List[Dict[str, Any]], page: int) -> httpx.Response:
        per_page = int(request.url.params.get("per_page", 30))
        start = (page - 1) * per_page
        chunk = items[start:start + per_page]
        last = max(1, -(-len(items) // per_page))
        headers = {}
        if page < last:
            url = request.url.copy_merge_params({"page": last})
            headers["link"] = (
                f'<{request.url.copy_merge_params({"page": page + 1})}>; rel="next", <{url}>; rel="last"'
            )
        return self._json(chunk, headers=headers)

    def _detail(self, sha: str) -> httpx.Response:
        status = self.detail_status.get(sha)
        if status is not None:
            return self._json({"message": "Unavailable"}, status_code=status)
        item = next((c for c in self.commits if c["sha"] == sha), None)
        if item is None:
            return self._json({"message": "No commit found for SHA"}, status_code=422)
        index = int(sha, 16)
        additions, deletions = index % 7 + 1, index % 3
        return self._json(dict(
            item,
            stats={"additions": additions, "deletions": deletions, "total": additions + deletions},
            files=[{
                "filename": f"src/file_{index % 5}.py",
                "additions": additions,
                "deletions": deletions,
                "changes": additions + deletions,
            }],
        ))


@pytest.fixture
def fake_github():
    return FakeGitHub()
