"""
Tests for RefStore against real git repositories.
"""

import json
import os
import subprocess
from datetime import datetime

from gitsocial.infra import GitClient, RefStore
from gitsocial.infra.ref_store import EMPTY_TREE

from conftest import git


class TestRefStore:
    """Tests for the append-only ref store."""

    def setup_method(self):
        self.store = RefStore(GitClient())

    def test_read_missing_key(self, workspace):
        result = self.store.read(str(workspace), "reading")
        assert result.success
        assert result.data is None

    def test_write_then_read(self, workspace):
        data = {"id": "reading", "name": "Reading", "repositories": []}

        written = self.store.write(str(workspace), "reading", data)

        assert written.success
        assert git(workspace, "rev-parse", "refs/gitmsg/social/lists/reading") == written.data
        assert self.store.read(str(workspace), "reading").data == data

    def test_writes_are_chained(self, workspace):
        """Every write is a commit on the empty tree parented on the previous one."""
        first = self.store.write(str(workspace), "reading", {"v": 1}).data
        second = self.store.write(str(workspace), "reading", {"v": 2}).data

        assert git(workspace, "rev-parse", f"{second}^") == first
        assert git(workspace, "rev-parse", f"{second}^{{tree}}") == EMPTY_TREE

    def test_history_newest_first(self, workspace):
        self.store.write(str(workspace), "reading", {"repositories": ["x"]})
        self.store.write(str(workspace), "reading", {"repositories": ["x", "y"]})

        history = self.store.history(str(workspace), "reading")

        assert history.success
        assert [v.repositories for v in history.data] == [["x", "y"], ["x"]]
        assert history.data[0].author == "Test User"

    def test_history_of_missing_key_fails(self, workspace):
        assert not self.store.history(str(workspace), "nope").success

    def test_enumerate_and_delete(self, workspace):
        self.store.write(str(workspace), "a", {})
        self.store.write(str(workspace), "b", {})

        assert sorted(self.store.enumerate(str(workspace))) == ["a", "b"]

        assert self.store.delete(str(workspace), "a").success
        assert self.store.enumerate(str(workspace)) == ["b"]

    def test_corrupt_record_reads_as_none(self, workspace, caplog):
        commit_hash = git(workspace, "commit-tree", EMPTY_TREE, "-m", "{not json")
        git(workspace, "update-ref", "refs/gitmsg/social/lists/broken", commit_hash)

        result = self.store.read(str(workspace), "broken")

        assert result.success
        assert result.data is None
        assert "Corrupt JSON" in caplog.text

    def test_history_keeps_unparsable_content(self, workspace):
        commit_hash = git(workspace, "commit-tree", EMPTY_TREE, "-m", "{not json")
        git(workspace, "update-ref", "refs/gitmsg/social/lists/broken", commit_hash)
        self.store.write(str(workspace), "broken", {"repositories": ["x"]})

        versions = self.store.history(str(workspace), "broken").data

        assert versions[0].content == {"repositories": ["x"]}
        assert versions[1].content == "{not json"
        assert versions[1].repositories == []

    def test_other_extension_namespace(self, workspace):
        store = RefStore(GitClient(), extension="pm")
        store.write(str(workspace), "board", {"x": 1})

        assert store.ref_for("board") == "refs/gitmsg/pm/lists/board"
        assert self.store.enumerate(str(workspace)) == []
        assert json.loads(git(workspace, "log", "-1", "--format=%B", "refs/gitmsg/pm/lists/board")) == {"x": 1}

    def test_history_timestamps_are_utc(self, workspace):
        env = dict(os.environ, GIT_AUTHOR_DATE="2025-01-01T10:00:00+09:00",
                   GIT_COMMITTER_DATE="2025-01-01T10:00:00+09:00")
        commit_hash = subprocess.run(
            ["git", "commit-tree", EMPTY_TREE, "-m", '{"repositories": []}'],
            cwd=workspace, env=env, capture_output=True, text=True, check=True,
        ).stdout.strip()
        git(workspace, "update-ref", "refs/gitmsg/social/lists/dated", commit_hash)

        versions = self.store.history(str(workspace), "dated").data

        assert versions[0].timestamp == datetime(2025, 1, 1, 1, 0)
