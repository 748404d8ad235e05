"""
End-to-end tests for the GitSocial session against real git repositories.
"""

import pytest

import gitsocial
from gitsocial.protocol import normalize_url

from conftest import commit, git, init_repo


@pytest.fixture
def world(tmp_path, workspace, make_repo, config, storage_base):
    """A workspace with an origin, and alice who follows it and comments on its post."""
    origin = init_repo(tmp_path / "origin.git", bare=True)
    git(workspace, "remote", "add", "origin", str(origin))
    my_url = normalize_url(str(origin))
    my_post = git(workspace, "rev-parse", "HEAD")[:12]

    alice = make_repo("alice")
    alice_session = gitsocial.GitSocial(str(alice), config=config, storage_base=storage_base)
    alice_session.create_list("friends", "Friends")
    alice_session.add_repository("friends", f"{my_url}#branch:main")
    commit(alice, 'Nice!\n\n--- GitMsg: ext="social"; type="comment"; '
                  f'original="{my_url}#commit:{my_post}"; v="0.1.0"; ext-v="0.1.0" ---')

    gs = gitsocial.create(str(workspace), storage_base=storage_base, config=config)
    return gs, normalize_url(str(alice)), my_url


class TestSession:
    """Tests for a full session: lists, fetching, posts, followers and notifications."""

    def test_timeline_after_fetch(self, world):
        gs, alice_url, _ = world
        assert gs.create_list("reading").success
        assert gs.add_repository("reading", f"{alice_url}#branch:main").success

        summary = gs.fetch_updates().data

        assert (summary.total, summary.fetched, summary.failed) == (1, 1, 0)
        posts = gs.posts("list:reading").data
        assert {p.content for p in posts} == {"Nice!", "Initial commit of alice"}
        assert {p.content for p in gs.posts("timeline").data} >= {"Nice!", "Initial commit"}
        assert [p.type for p in gs.posts("timeline", types=["comment"]).data] == ["comment"]

    def test_second_fetch_is_skipped(self, world):
        gs, alice_url, _ = world
        gs.create_list("reading")
        gs.add_repository("reading", f"{alice_url}#branch:main")
        gs.fetch_updates()

        summary = gs.fetch_updates(since=gs.storage_service.oldest_fetched_date(gs.storage_base, alice_url)).data

        assert summary.skipped == 1

    def test_followers_and_notifications(self, world):
        gs, alice_url, my_url = world
        gs.create_list("reading")
        gs.add_repository("reading", f"{alice_url}#branch:main")
        gs.fetch_updates()

        followers = gs.followers().data
        assert [(f.url, f.follows_via) for f in followers] == [(alice_url, "Friends")]
        assert gs.is_follower(f"{alice_url}#branch:main").data is True

        notifications = gs.notifications().data
        assert sorted(n.type for n in notifications) == ["comment", "follow"]
        assert all(n.commit_id.startswith(f"{alice_url}#commit:") for n in notifications)

    def test_list_changes_reach_posts(self, world):
        gs, alice_url, _ = world
        gs.create_list("reading")
        gs.add_repository("reading", f"{alice_url}#branch:main")
        gs.fetch_updates()
        assert gs.posts("list:reading").data

        gs.remove_repository("reading", alice_url)

        assert gs.posts("list:reading").data == []
        assert gs.repositories("following").data == []

    def test_repositories_scopes(self, world):
        gs, alice_url, my_url = world
        gs.create_list("reading")
        gs.add_repository("reading", f"{alice_url}#branch:main")

        assert [r.url for r in gs.repositories().data] == [my_url]
        assert [r.lists for r in gs.repositories("following").data] == [("reading",)]
