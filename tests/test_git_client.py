"""
Tests for GitClient log parsing against real git repositories.
"""

import os
import subprocess
from datetime import date, datetime
from unittest.mock import MagicMock

from gitsocial.domain.result import Result
from gitsocial.infra.git_client import FIELD_SEP, RECORD_SEP, GitClient, GitOutput
from gitsocial.services.cache_service import ContentCache
from gitsocial.services.storage_service import StorageService


def commit_at(path, message, when):
    """Commit with both author and committer dates pinned to an ISO timestamp with offset."""
    env = dict(os.environ, GIT_AUTHOR_DATE=when, GIT_COMMITTER_DATE=when)
    subprocess.run(["git", "commit", "-q", "--allow-empty", "-m", message],
                   cwd=path, env=env, capture_output=True, check=True)


class TestLogDates:
    """Commit dates are normalized to UTC."""

    def test_offsets_are_converted(self, workspace):
        commit_at(workspace, "A", "2025-01-01T10:00:00+09:00")
        commit_at(workspace, "B", "2025-01-01T08:00:00-05:00")

        commits = GitClient().log(str(workspace), "main", limit=2)

        assert {c.message: c.date for c in commits} == {
            "A": datetime(2025, 1, 1, 1, 0),
            "B": datetime(2025, 1, 1, 13, 0),
        }
        assert all(c.date.tzinfo is None for c in commits)

    def test_zulu_and_naive_dates(self):
        client = GitClient()
        stdout = RECORD_SEP.join([
            FIELD_SEP.join(["a" * 40, "2025-01-01T12:00:00Z", "Alice", "a@example.com", "one"]),
            FIELD_SEP.join(["b" * 40, "2025-01-01T12:00:00", "Alice", "a@example.com", "two"]),
        ])
        client.execute = MagicMock(return_value=Result.ok(GitOutput(stdout=stdout)))

        dates = [c.date for c in client.log("/ws", "main")]

        assert dates == [datetime(2025, 1, 1, 12, 0), datetime(2025, 1, 1, 12, 0)]

    def test_timeline_orders_across_zones(self, config, workspace):
        """A commit made later in UTC sorts first even when its local clock reads earlier."""
        commit_at(workspace, "A", "2025-01-01T10:00:00+09:00")
        commit_at(workspace, "B", "2025-01-01T08:00:00-05:00")
        cache = ContentCache(config, GitClient(), StorageService(config, GitClient()))
        cache.initialize(str(workspace), since=date(2024, 12, 1))

        posts = cache.get_posts(str(workspace), "timeline").data
        dated = [p.content for p in posts if p.content in ("A", "B")]

        assert dated == ["B", "A"]

        window = cache.get_posts(str(workspace), "timeline",
                                 since="2025-01-01T12:00:00+00:00",
                                 until="2025-01-01T14:00:00+00:00").data
        assert [p.content for p in window] == ["B"]
