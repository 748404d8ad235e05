"""
Notification service for gitsocial.

Notifications are derived, never stored:
- comments, reposts and quotes from other repositories that point at our posts
- follow events, read from the history of the list a follower follows us through
"""

import os
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from .. import errors
from ..config import load_config
from ..domain.post import Notification, NotificationCommit, Post
from ..domain.repository import Follower, utc_now
from ..domain.result import Result
from ..domain.social_list import ListVersion
from ..errors import result_boundary
from ..infra.git_client import GitClient
from ..infra.ref_store import RefStore
from ..protocol import base_url, create_ref, is_my_repository
from . import workspace
from .cache_service import ContentCache, as_datetime
from .follower_service import FollowerService
from .list_service import UPSTREAM_LIST_PREFIX, ListService

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7
DEFAULT_LIMIT = 100


def _points_at(ref: Optional[str], my_url: str) -> bool:
    return bool(ref) and not ref.startswith('#') and base_url(ref) == my_url


def is_notification_post(post: Post, my_url: str, workdir: str) -> bool:
    """
    True for another repository's comment, repost or quote of our content.

    A comment counts when its original post or its parent comment lives in
    our repository; a repost or quote when its original post does.
    """
    if is_my_repository(post.repository, my_url, workdir):
        return False
    if post.type == 'comment':
        return _points_at(post.original_post_id, my_url) or _points_at(post.parent_comment_id, my_url)
    if post.type in ('repost', 'quote'):
        return _points_at(post.original_post_id, my_url)
    return False


def find_follow_version(versions: List[ListVersion], my_url: str) -> Optional[ListVersion]:
    """
    The version of a list that added my_url.

    Versions are newest first. The answer is the newest version containing
    my_url whose next older version does not; a first version containing
    it counts as the addition.
    """
    for i, version in enumerate(versions):
        if my_url not in {base_url(r) for r in version.repositories}:
            continue
        older = versions[i + 1] if i + 1 < len(versions) else None
        if older is None or my_url not in {base_url(r) for r in older.repositories}:
            return version
    return None


class NotificationService:
    """
    Service for notifications concerning the workspace repository.

    Example:
        service = NotificationService()
        for n in service.get_notifications("/path/to/workspace").data:
            print(n.type, n.commit_id)
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        git_client: Optional[GitClient] = None,
        cache: Optional[ContentCache] = None,
        lists: Optional[ListService] = None,
        followers: Optional[FollowerService] = None,
        store: Optional[RefStore] = None
    ):
        self.config = config or load_config()
        self.git = git_client or GitClient()
        self.cache = cache or ContentCache(self.config, self.git)
        self.lists = lists or ListService(self.config, self.git, cache=self.cache)
        self.followers = followers or FollowerService(self.config, self.git, lists=self.lists)
        self.store = store or RefStore(self.git)

    def _history_of(self, follower: Follower, workdir: str) -> Optional[List[ListVersion]]:
        """History of the list a follower follows us through, read from its clone or a workspace remote."""
        if follower.path and os.path.isdir(follower.path):
            path, prefix = follower.path, UPSTREAM_LIST_PREFIX
            lists = self.lists.get_lists(follower.path)
        else:
            remote = next(
                (name for name, url in self.git.list_remotes(workdir).items() if base_url(url) == follower.url),
                None,
            )
            if remote is None:
                return None
            path, prefix = workdir, f'refs/remotes/{remote}/gitmsg/social/lists/'
            lists = self.lists.get_remote_lists(follower.url, workdir)

        if not lists.success:
            return None
        source = next((lst for lst in lists.data if lst.name == follower.follows_via), None)
        if source is None:
            return None

        history = self.store.history(path, source.id, ref=f'{prefix}{source.id}')
        if not history.success:
            logger.debug(f"No history for list '{source.id}' of {follower.url}: {history.error.message}")
            return None
        return history.data

    def get_follow_notifications(
        self,
        workdir: str,
        my_url: str,
        since: datetime,
        until: Optional[datetime] = None
    ) -> List[Notification]:
        """Follow events of current followers within [since, until]."""
        result = self.followers.get_followers(workdir)
        if not result.success:
            logger.warning(f"Skipping follow notifications: {result.error.message}")
            return []

        notifications = []
        for follower in result.data:
            versions = self._history_of(follower, workdir)
            if not versions:
                continue

            event = find_follow_version(versions, my_url)
            if event is None:
                continue
            if event.timestamp < since or (until is not None and event.timestamp > until):
                continue

            notifications.append(Notification(
                type='follow',
                commit_id=create_ref('commit', event.hash, follower.url),
                commit=NotificationCommit(author=event.author, email=event.email, timestamp=event.timestamp),
            ))
        return notifications

    @result_boundary(errors.READ_ERROR, "Failed to get notifications")
    def get_notifications(
        self,
        workdir: str,
        storage_base: Optional[str] = None,
        since: Any = None,
        until: Any = None,
        limit: int = DEFAULT_LIMIT
    ) -> Result[List[Notification]]:
        """
        Notifications for the workspace repository, newest first.

        Args:
            workdir: Workspace path
            storage_base: Clone root, used to extend the cache when needed
            since: Start of the window (default: 7 days ago)
            until: End of the window (default: open)
            limit: Maximum notifications returned

        Returns:
            Result with Notification objects
        """
        my_url = workspace.get_my_url(self.git, workdir)
        if not my_url:
            return Result.fail(errors.NO_ORIGIN, "Could not find my repository URL")

        since_dt = as_datetime(since) or utc_now() - timedelta(days=DEFAULT_WINDOW_DAYS)
        until_dt = as_datetime(until)

        if storage_base and not self.cache.is_cache_range_covered(since_dt):
            self.cache.load_additional_posts(workdir, storage_base, since_dt)

        posts = self.cache.get_posts(workdir, 'timeline', since=since_dt, until=until_dt, storage_base=storage_base)
        if not posts.success:
            return Result.from_error(posts.error)

        notifications = [
            Notification(
                type=post.type,
                commit_id=post.id,
                commit=NotificationCommit(author=post.author.name, email=post.author.email, timestamp=post.timestamp),
            )
            for post in posts.data if is_notification_post(post, my_url, workdir)
        ]
        notifications.extend(self.get_follow_notifications(workdir, my_url, since_dt, until_dt))

        notifications.sort(key=lambda n: n.commit.timestamp, reverse=True)
        logger.debug(f"{len(notifications)} notifications for {my_url} since {since_dt.date()}")
        return Result.ok(notifications[:limit or DEFAULT_LIMIT])
