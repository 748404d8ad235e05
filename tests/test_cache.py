"""
Tests for the session content cache.
"""

import threading
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from gitsocial import errors
from gitsocial.domain.repository import Repository
from gitsocial.domain.social_list import SocialList
from gitsocial.infra.git_client import GitClient, GitCommit
from gitsocial.protocol import normalize_url
from gitsocial.services.cache_service import ContentCache, parse_scope
from gitsocial.services.storage_service import StorageService

from conftest import commit

BASE_TIME = datetime(2025, 1, 1, 12, 0)


def make_commit(i, message=None):
    return GitCommit(
        hash=f"{i:012x}".ljust(40, '0'),
        date=BASE_TIME + timedelta(minutes=i),
        author="Alice",
        email="alice@example.com",
        message=message or f"Post {i}",
    )


def ref(i):
    return f"#commit:{i:012x}"


@pytest.fixture
def mock_git():
    client = MagicMock(spec=GitClient)
    client.rev_parse.return_value = None
    client.symbolic_ref.return_value = None
    client.list_remotes.return_value = {}
    client.log.return_value = [make_commit(i) for i in range(3)]
    return client


@pytest.fixture
def cache(config, mock_git):
    return ContentCache(config, mock_git, MagicMock(spec=StorageService))


class TestParseScope:
    """Tests for parse_scope."""

    @pytest.mark.parametrize("scope,expected", [
        ("timeline", {'kind': 'timeline'}),
        ("list:reading", {'kind': 'list', 'list': 'reading'}),
        ("repository:https://github.com/a/b/list:reading",
         {'kind': 'list', 'list': 'reading', 'repository': 'https://github.com/a/b'}),
        ("repository:https://github.com/a/b", {'kind': 'repository', 'repository': 'https://github.com/a/b'}),
        ("byId:#commit:aaa, #commit:bbb", {'kind': 'byId', 'ids': ['#commit:aaa', '#commit:bbb']}),
    ])
    def test_valid(self, scope, expected):
        assert parse_scope(scope) == expected

    @pytest.mark.parametrize("scope", ["bogus", "list:", "byId: , ", "repository:/list:x"])
    def test_invalid(self, cache, scope):
        assert cache.get_posts("/ws", scope).code == errors.INVALID_SCOPE


class TestGetPosts:
    """Tests for scope queries over workspace posts."""

    def test_timeline_newest_first(self, cache):
        posts = cache.get_posts("/ws", "timeline").data

        assert [p.id for p in posts] == [ref(2), ref(1), ref(0)]

    def test_loads_once(self, cache, mock_git):
        cache.get_posts("/ws", "timeline")
        cache.get_posts("/ws", "timeline")
        assert mock_git.log.call_count == 1

    def test_skip_cache_reloads(self, cache, mock_git):
        cache.get_posts("/ws", "timeline")
        cache.get_posts("/ws", "timeline", skip_cache=True)
        assert mock_git.log.call_count == 2

    def test_filters(self, cache, mock_git):
        comment = ('Agreed\n\n--- GitMsg: ext="social"; type="comment"; '
                   f'original="{ref(0)}"; v="0.1.0"; ext-v="0.1.0" ---')
        mock_git.log.return_value = [make_commit(0), make_commit(1), make_commit(2, comment)]

        comments = cache.get_posts("/ws", "timeline", types=["comment"]).data
        assert [p.id for p in comments] == [ref(2)]

        window = cache.get_posts("/ws", "timeline",
                                 since=BASE_TIME + timedelta(minutes=1),
                                 until=BASE_TIME + timedelta(minutes=1)).data
        assert [p.id for p in window] == [ref(1)]

        assert len(cache.get_posts("/ws", "timeline", limit=2).data) == 2
        oldest = cache.get_posts("/ws", "timeline", sort_by="oldest").data
        assert oldest[0].id == ref(0)

    def test_post_and_by_id(self, cache):
        assert [p.id for p in cache.get_posts("/ws", f"post:{ref(1)}").data] == [ref(1)]
        assert cache.get_posts("/ws", "post:#commit:ffffffffffff").data == []

        by_id = cache.get_posts("/ws", f"byId:{ref(0)},{ref(2)},{ref(0)}").data
        assert [p.id for p in by_id] == [ref(2), ref(0)]

    def test_thread_oldest_first(self, cache, mock_git):
        reply = ('Agreed\n\n--- GitMsg: ext="social"; type="comment"; '
                 f'original="{ref(0)}"; v="0.1.0"; ext-v="0.1.0" ---')
        nested = ('Me too\n\n--- GitMsg: ext="social"; type="comment"; '
                  f'original="{ref(0)}"; reply-to="{ref(1)}"; v="0.1.0"; ext-v="0.1.0" ---')
        mock_git.log.return_value = [make_commit(0), make_commit(1, reply), make_commit(2, nested), make_commit(3)]

        thread = cache.get_posts("/ws", f"thread:{ref(0)}").data

        assert [p.id for p in thread] == [ref(0), ref(1), ref(2)]

    def test_repository_my(self, cache):
        assert len(cache.get_posts("/ws", "repository:my").data) == 3

    def test_git_lookups_do_not_block_other_readers(self, cache, mock_git):
        """Lists and the workspace URL are resolved while other threads can still use the cache."""
        unblocked = []

        def other_reader_finishes():
            reader = threading.Thread(target=cache.store_list, args=("/other", SocialList(id="x", name="x")))
            reader.start()
            reader.join(1)
            return not reader.is_alive()

        def load_lists(workdir):
            unblocked.append(other_reader_finishes())
            return [SocialList(id="reading", name="reading", repositories=("https://github.com/a/b#branch:main",))]

        def list_remotes(path):
            unblocked.append(other_reader_finishes())
            return {}

        cache.list_loader = load_lists
        mock_git.list_remotes.side_effect = list_remotes

        assert cache.get_posts("/ws", "list:reading").data == []
        assert len(cache.get_posts("/ws", "repository:my").data) == 3
        assert unblocked and all(unblocked)

    def test_disabled_cache_returns_nothing(self, cache, mock_git):
        cache.set_enabled(False)
        assert cache.get_posts("/ws", "timeline").data == []
        mock_git.log.assert_not_called()


class TestRangesAndEviction:
    """Tests for cached ranges, refresh and eviction."""

    def test_initialize_covers_start_date(self, cache):
        cache.initialize("/ws", since=date(2025, 1, 1))

        assert cache.is_cache_range_covered("2025-01-10")
        assert not cache.is_cache_range_covered("2024-12-31")

    def test_empty_extension_is_not_covered(self, cache):
        cache.initialize("/ws", since=date(2025, 1, 1))

        result = cache.load_additional_posts("/ws", None, date(2024, 12, 1))

        assert result.data == 0
        assert not cache.is_cache_range_covered("2024-12-01")

    def test_extension_keeps_existing_posts(self, cache, mock_git):
        cache.initialize("/ws", since=date(2025, 1, 1))
        mock_git.log.return_value = [make_commit(5000)]

        assert cache.load_additional_posts("/ws", None, date(2024, 12, 1)).data == 1
        assert cache.is_cache_range_covered("2024-12-01")
        assert len(cache.get_posts("/ws", "all").data) == 4

    def test_refresh_by_hash(self, cache):
        cache.initialize("/ws")
        cache.refresh(hashes=[f"{1:012x}".ljust(40, '0')])

        assert cache.get_post_by_id(ref(1)) is None
        assert cache.get_post_by_id(ref(0)) is not None

    def test_refresh_all(self, cache):
        cache.initialize("/ws")
        cache.store_lists("/ws", [SocialList(id="reading", name="reading")])

        cache.refresh(all=True)

        assert cache.get_stats()['posts']['size'] == 0
        assert cache.get_cached_lists("/ws") is None
        assert cache.get_cached_ranges() == []

    def test_evicts_oldest_inserted(self, cache, mock_git):
        cache.set_max_size(1000)
        mock_git.log.return_value = [make_commit(i) for i in range(1005)]

        cache.initialize("/ws")

        assert cache.get_stats()['posts']['size'] == 1000
        assert cache.get_post_by_id(ref(0)) is None
        assert cache.get_post_by_id(ref(4)) is None
        assert cache.get_post_by_id(ref(5)) is not None

    def test_size_is_clamped(self, config, mock_git, caplog):
        config['cache']['max_size'] = 10
        cache = ContentCache(config, mock_git, MagicMock(spec=StorageService))

        assert cache.max_size == 1000
        assert "too small" in caplog.text

        cache.set_max_size(10 ** 9)
        assert cache.max_size == 1000000


class TestListIndex:
    """Tests for the list index and repository metadata."""

    def test_incomplete_index(self, cache):
        assert cache.get_cached_lists("/ws") is None
        cache.store_list("/ws", SocialList(id="x", name="x"))
        assert cache.get_cached_lists("/ws") is None

    def test_store_and_refresh(self, cache):
        cache.store_lists("/ws", [SocialList(id="a", name="a"), SocialList(id="b", name="b")])
        assert [lst.id for lst in cache.get_cached_lists("/ws")] == ["a", "b"]

        cache.refresh(lists=["a"])

        assert cache.get_cached_lists("/ws") is None
        assert cache.get_cached_list("/ws", "a") is None
        assert cache.get_cached_list("/ws", "b") is not None

    def test_repository_metadata_ttl(self, cache):
        repo = Repository(id="https://github.com/a/b#branch:main", url="https://github.com/a/b", name="a/b")

        cache.store_repositories("/ws", "workspace:my", [repo])
        assert cache.get_cached_repositories("/ws", "workspace:my") is None

        with patch("gitsocial.services.cache_service.time.monotonic", side_effect=[100.0, 200.0, 100.0 + 3600]):
            cache.store_repositories("/ws", "following", [repo])
            assert cache.get_cached_repositories("/ws", "following") == [repo]
            assert cache.get_cached_repositories("/ws", "following") is None

    def test_list_change_drops_following_metadata(self, cache):
        repo = Repository(id="https://github.com/a/b#branch:main", url="https://github.com/a/b", name="a/b")
        cache.store_repositories("/ws", "following", [repo])
        cache.store_repositories("/ws", "repository:https://github.com/a/b", [repo])

        cache.refresh(lists=["reading"])

        assert cache.get_cached_repositories("/ws", "following") is None
        assert cache.get_cached_repositories("/ws", "repository:https://github.com/a/b") == [repo]


class TestFollowedPosts:
    """List scopes over posts of followed repositories held in storage."""

    @pytest.fixture
    def alice(self, make_repo, config, storage_base):
        repo = make_repo("alice")
        commit(repo, "Hello from alice")
        storage = StorageService(config, GitClient())
        assert storage.ensure_repository(storage_base, str(repo), "main").success
        return repo

    def test_list_scope_follows_list_changes(self, config, storage_base, workspace, alice):
        alice_url = normalize_url(str(alice))
        current = {'lists': [SocialList(id="reading", name="reading", repositories=(f"{alice_url}#branch:main",))]}
        cache = ContentCache(config, GitClient(), StorageService(config, GitClient()))
        cache.list_loader = lambda workdir: current['lists']

        posts = cache.get_posts(str(workspace), "list:reading", storage_base=storage_base).data
        assert {p.content for p in posts} == {"Hello from alice", "Initial commit of alice"}
        assert all(p.repository == alice_url for p in posts)

        repo_posts = cache.get_posts(str(workspace), f"repository:{alice_url}", storage_base=storage_base).data
        assert len(repo_posts) == 2

        current['lists'] = [SocialList(id="reading", name="reading")]
        cache.refresh(lists=["reading"])

        assert cache.get_posts(str(workspace), "list:reading", storage_base=storage_base).data == []
        timeline = cache.get_posts(str(workspace), "timeline", storage_base=storage_base).data
        assert "Initial commit" in {p.content for p in timeline}

    def test_refresh_repository_drops_its_posts(self, config, storage_base, workspace, alice):
        alice_url = normalize_url(str(alice))
        cache = ContentCache(config, GitClient(), StorageService(config, GitClient()))
        cache.list_loader = lambda workdir: [
            SocialList(id="reading", name="reading", repositories=(f"{alice_url}#branch:main",))
        ]
        cache.get_posts(str(workspace), "timeline", storage_base=storage_base)

        cache.refresh(repositories=[f"{alice_url}#branch:main"])

        assert cache.get_stats()["posts"]["size"] == 1
