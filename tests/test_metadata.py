"""Tests for pull request, issue and contributor listings."""

import asyncio

import pytest

from conftest import FakeGitHub
from contrib_attribution.config import PipelineConfig
from contrib_attribution.core.models import WarningCode
from contrib_attribution.exceptions import RequestCancelledError
from contrib_attribution.github.metadata import RemoteMetadataFetcher
from contrib_attribution.github.request_queue import RequestQueue


def pulls(count):
    return [{"number": n, "user": {"login": f"user{n % 3}"}} for n in range(1, count + 1)]


def build_fetcher(fake, settings=None, cancel_event=None):
    return RemoteMetadataFetcher(
        fake.client(),
        RequestQueue(max_concurrent=3),
        settings or PipelineConfig(page_delay_ms=0, batch_delay_ms=0),
        cancel_event=cancel_event,
    )


class TestRemoteMetadataFetcher:
    """Test listing, filtering and the page ceiling."""

    @pytest.mark.asyncio
    async def test_counts_and_filters_pull_requests_from_issues(self):
        fake = FakeGitHub()
        fake.pulls = pulls(3)
        fake.issues = [{"number": 10}, {"number": 1, "pull_request": {}}, {"number": 11}]
        fake.contributors = [{"login": "user1", "contributions": 7}]

        metadata = await build_fetcher(fake).fetch("octo", "widgets")

        assert metadata.pull_requests == 3
        assert metadata.issues == 2
        assert metadata.pull_requests_by_author == {"user1": 1, "user2": 1, "user0": 1}
        assert metadata.contributors[0].contributions == 7
        assert metadata.warnings == []

    @pytest.mark.asyncio
    async def test_page_ceiling_reported_as_warning(self):
        """A listing cut off at the page ceiling is flagged instead of silently undercounted."""
        fake = FakeGitHub()
        fake.pulls = pulls(1050)

        metadata = await build_fetcher(fake).fetch("octo", "widgets")

        assert metadata.pull_requests == 1000
        assert len(metadata.warnings) == 1
        warning = metadata.warnings[0]
        assert warning.code is WarningCode.PAGE_LIMIT_REACHED
        assert warning.details == {"listing": "pull requests", "max_pages": 10, "collected": 1000}
        assert sum(1 for p in fake.paths if p.endswith("/pulls")) == 10

    @pytest.mark.asyncio
    async def test_listing_exactly_at_ceiling_is_not_truncated(self):
        fake = FakeGitHub()
        fake.pulls = pulls(250)
        settings = PipelineConfig(page_delay_ms=0, batch_delay_ms=0, metadata_max_pages=3)

        metadata = await build_fetcher(fake, settings).fetch("octo", "widgets")

        assert metadata.pull_requests == 250
        assert metadata.warnings == []

    @pytest.mark.asyncio
    async def test_cancelled_fetch_requests_nothing(self):
        fake = FakeGitHub()
        cancel_event = asyncio.Event()
        cancel_event.set()

        with pytest.raises(RequestCancelledError):
            await build_fetcher(fake, cancel_event=cancel_event).fetch("octo", "widgets")

        assert fake.requests == []
