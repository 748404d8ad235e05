"""
High-level Python API for gitsocial.

One GitSocial object is one session on one workspace. It owns the shared
GitClient, RefStore and ContentCache and hands them to every service, so a
list written through the session is visible to the next read of posts.

Example:
    import gitsocial

    gs = gitsocial.GitSocial("/path/to/workspace")

    # Lists
    gs.create_list("reading", "Reading list")
    gs.add_repository("reading", "https://github.com/user/repo#branch:main")

    # Keep followed repositories current
    summary = gs.fetch_updates().data
    print(summary.to_dict())

    # Content
    for post in gs.posts("timeline", since="2025-01-01").data:
        print(post.author.name, post.content)

    # Derived social state
    for follower in gs.followers().data:
        print(follower.name, follower.follows_via)
    for n in gs.notifications().data:
        print(n.type, n.commit_id)

    # Low-level access to services
    gs.list_service
    gs.repository_service
"""

import threading
from typing import Any, Dict, List, Optional
import logging

from .config import configure_logging, load_config
from .domain import Follower, ListSyncReport, Notification, OperationSummary, Post, Repository, SocialList
from .domain.result import Result
from .infra import GitClient, RefStore
from .services import (
    ContentCache,
    FollowerService,
    ListService,
    NotificationService,
    PostParser,
    RepositoryFilter,
    RepositoryService,
    StorageService,
)

logger = logging.getLogger(__name__)


class GitSocial:
    """
    High-level API for gitsocial.

    Example:
        gs = GitSocial("/path/to/workspace", storage_base="/tmp/gitsocial")
        gs.create_list("reading")
        gs.follow_list("https://github.com/friend/repo", "reading")
    """

    def __init__(
        self,
        workdir: str,
        config: Optional[Dict[str, Any]] = None,
        storage_base: Optional[str] = None,
        parser: Optional[PostParser] = None
    ):
        """
        Initialize GitSocial.

        Args:
            workdir: Path of the workspace repository
            config: Full config dict (overrides file if provided)
            storage_base: Clone root (overrides storage.base)
            parser: Post parser (GitMsg trailers by default)
        """
        self.workdir = workdir
        self._config = config or load_config()
        configure_logging(self._config)

        self.storage_base = storage_base or self._config.get('storage', {}).get('base')

        git_config = self._config.get('git', {})
        self._git_client = GitClient(
            timeout=git_config.get('command_timeout', 30),
            network_timeout=git_config.get('network_timeout', 120),
        )
        self._ref_store = RefStore(self._git_client)

        self._storage_service = StorageService(self._config, self._git_client)
        self._cache = ContentCache(self._config, self._git_client, self._storage_service, parser)
        self._list_service = ListService(
            self._config, self._git_client, self._ref_store, self._storage_service, self._cache, self.storage_base
        )
        self._repository_service = RepositoryService(
            self._config, self._git_client, self._storage_service, self._list_service, self._cache, self.storage_base
        )
        self._follower_service = FollowerService(
            self._config, self._git_client, self._list_service, self._repository_service
        )
        self._notification_service = NotificationService(
            self._config, self._git_client, self._cache, self._list_service, self._follower_service, self._ref_store
        )

        self._cache.list_loader = lambda wd: self._list_service.get_lists(wd).data or []

    @property
    def config(self) -> Dict[str, Any]:
        """Access the configuration."""
        return self._config

    @property
    def cache(self) -> ContentCache:
        return self._cache

    @property
    def storage_service(self) -> StorageService:
        return self._storage_service

    @property
    def list_service(self) -> ListService:
        return self._list_service

    @property
    def repository_service(self) -> RepositoryService:
        return self._repository_service

    @property
    def follower_service(self) -> FollowerService:
        return self._follower_service

    @property
    def notification_service(self) -> NotificationService:
        return self._notification_service

    # =========================================================================
    # LISTS
    # =========================================================================

    def lists(self) -> Result[List[SocialList]]:
        return self._list_service.get_lists(self.workdir)

    def get_list(self, list_id: str) -> Result[Optional[SocialList]]:
        return self._list_service.get_list(self.workdir, list_id)

    def create_list(self, list_id: str, name: Optional[str] = None) -> Result[SocialList]:
        return self._list_service.create_list(self.workdir, list_id, name)

    def update_list(self, list_id: str, **updates: Any) -> Result[SocialList]:
        return self._list_service.update_list(self.workdir, list_id, updates)

    def delete_list(self, list_id: str) -> Result[None]:
        return self._list_service.delete_list(self.workdir, list_id)

    def add_repository(self, list_id: str, url: str) -> Result[str]:
        return self._list_service.add_repository(self.workdir, list_id, url)

    def remove_repository(self, list_id: str, url: str) -> Result[None]:
        return self._list_service.remove_repository(self.workdir, list_id, url)

    def remote_lists(self, url: str) -> Result[List[SocialList]]:
        return self._list_service.get_remote_lists(url, self.workdir)

    def follow_list(self, source_repo: str, source_list_id: str, target_id: Optional[str] = None) -> Result[str]:
        return self._list_service.follow_list(self.workdir, source_repo, source_list_id, target_id)

    def sync_list(self, list_id: str) -> Result[ListSyncReport]:
        return self._list_service.sync_followed_list(self.workdir, list_id)

    def unfollow_list(self, list_id: str) -> Result[SocialList]:
        return self._list_service.unfollow_list(self.workdir, list_id)

    # =========================================================================
    # REPOSITORIES
    # =========================================================================

    def repositories(
        self,
        scope: str = 'workspace:my',
        filter: Optional[RepositoryFilter] = None
    ) -> Result[List[Repository]]:
        return self._repository_service.get_repositories(self.workdir, scope, filter)

    def fetch_updates(
        self,
        scope: str = 'following',
        since: Any = None,
        branch: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> Result[OperationSummary]:
        """Ensure and fetch every repository of a scope, then refresh their posts."""
        return self._repository_service.fetch_updates(self.workdir, scope, since, branch, cancel_event)

    def ensure_data(self, url: str, branch: str, since: Any, is_persistent: bool = False) -> Result[None]:
        return self._repository_service.ensure_data_for_date_range(
            self.workdir, self.storage_base, url, branch, since, is_persistent
        )

    def cleanup_storage(self) -> None:
        self._repository_service.cleanup_storage()

    # =========================================================================
    # CONTENT
    # =========================================================================

    def posts(
        self,
        scope: str = 'timeline',
        since: Any = None,
        until: Any = None,
        types: Optional[List[str]] = None,
        limit: Optional[int] = None
    ) -> Result[List[Post]]:
        """
        Posts of a scope from the session cache.

        The cache is extended from storage first when since reaches back
        further than what it holds.
        """
        if since is not None and self.storage_base and not self._cache.is_cache_range_covered(since):
            self._cache.load_additional_posts(self.workdir, self.storage_base, since)
        return self._cache.get_posts(
            self.workdir, scope, since=since, until=until, types=types, limit=limit, storage_base=self.storage_base
        )

    def refresh(self, **kwargs: Any) -> Result[None]:
        return self._cache.refresh(**kwargs)

    # =========================================================================
    # SOCIAL GRAPH
    # =========================================================================

    def followers(
        self,
        limit: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> Result[List[Follower]]:
        return self._follower_service.get_followers(self.workdir, limit, cancel_event)

    def is_follower(self, url: str) -> Result[bool]:
        return self._follower_service.is_follower(self.workdir, url)

    def notifications(self, since: Any = None, until: Any = None, limit: int = 100) -> Result[List[Notification]]:
        return self._notification_service.get_notifications(self.workdir, self.storage_base, since, until, limit)


# Convenience function for quick access
def create(workdir: str, storage_base: Optional[str] = None, **kwargs) -> GitSocial:
    """
    Create a GitSocial session.

    Convenience function for:
        gs = gitsocial.create("/path/to/workspace")
    """
    return GitSocial(workdir, storage_base=storage_base, **kwargs)
