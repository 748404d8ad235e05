"""
Follower service for gitsocial.

A follower is a repository we follow whose own lists include our URL.
Followers are derived on demand by reading the lists of every followed
repository; nothing is persisted.
"""

import os
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Deque, Dict, List, Optional, Tuple
import logging

from .. import errors
from ..config import load_config
from ..domain.operation import OperationDetail, OperationStatus, OperationSummary
from ..domain.repository import Follower, Repository
from ..domain.result import Result
from ..domain.social_list import SocialList
from ..errors import result_boundary
from ..infra.git_client import GitClient
from ..protocol import base_url, parse_repository_id
from . import workspace
from .list_service import ListService
from .repository_service import RepositoryService

logger = logging.getLogger(__name__)


def find_list_containing(lists: List[SocialList], my_url: str) -> Optional[SocialList]:
    """First list whose repositories include my_url (compared by normalized base URL)."""
    for social_list in lists:
        if any(base_url(entry) == my_url for entry in social_list.repositories):
            return social_list
    return None


class FollowerService:
    """
    Service for follow-back detection.

    Example:
        service = FollowerService()
        for follower in service.get_followers("/path/to/workspace").data:
            print(f"{follower.name} follows via {follower.follows_via}")
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        git_client: Optional[GitClient] = None,
        lists: Optional[ListService] = None,
        repositories: Optional[RepositoryService] = None
    ):
        """
        Initialize FollowerService.

        Args:
            config: Configuration dict (loads default if None)
            git_client: GitClient instance (creates new if None)
            lists: ListService for reading lists (creates new if None)
            repositories: RepositoryService for the following scope (creates new if None)
        """
        self.config = config or load_config()
        self.git = git_client or GitClient()
        self.lists = lists or ListService(self.config, self.git)
        self.repositories = repositories or RepositoryService(self.config, self.git, lists=self.lists)
        self.max_workers = self.config.get('fetch', {}).get('max_workers', 4)
        self.last_result: Optional[OperationSummary] = None

    def _my_url(self, workdir: str) -> Optional[str]:
        return workspace.get_my_url(self.git, workdir)

    def _lists_of(self, repo: Repository, workdir: str) -> Result[List[SocialList]]:
        """Lists of a followed repository, from its clone when there is one."""
        if repo.path and os.path.isdir(repo.path):
            result = self.lists.get_lists(repo.path)
            if result.success:
                return result
            logger.debug(f"Clone of {repo.url} unreadable, asking remote: {result.error.message}")
        return self.lists.get_remote_lists(f"{repo.url}#branch:{repo.branch}", workdir)

    def _check(self, repo: Repository, workdir: str, my_url: str) -> Result[Optional[Follower]]:
        lists = self._lists_of(repo, workdir)
        if not lists.success:
            return Result.from_error(lists.error)

        match = find_list_containing(lists.data, my_url)
        if match is None:
            logger.debug(f"{repo.url}: none of {len(lists.data)} lists contain {my_url}")
            return Result.ok(None)

        logger.info(f"Found follower {repo.url} via list '{match.name}'")
        return Result.ok(Follower.from_repository(repo, match.name))

    @result_boundary(errors.READ_ERROR, "Failed to get followers")
    def get_followers(
        self,
        workdir: str,
        limit: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> Result[List[Follower]]:
        """
        Followed repositories that follow us back.

        Lists are read in parallel, at most max_workers at a time, and
        reported in following order. With a limit, no more repositories are
        read than could still be needed. A repository whose lists cannot be
        read is recorded in last_result and skipped.

        Args:
            workdir: Workspace path
            limit: Stop scanning once this many followers are found
            cancel_event: When set, pending repositories are not checked

        Returns:
            Result with Follower objects
        """
        my_url = self._my_url(workdir)
        if not my_url:
            return Result.fail(errors.NO_ORIGIN, "Could not determine repository URL")

        following = self.repositories.get_repositories(workdir, 'following')
        if not following.success:
            logger.warning(f"No followed repositories readable: {following.error.message}")
            return Result.ok([])

        repos = following.data
        logger.info(f"Checking {len(repos)} followed repositories for {my_url}")

        summary = OperationSummary(operation="get_followers")
        self.last_result = summary
        followers: List[Follower] = []
        remaining = iter(repos)
        in_flight: Deque[Tuple[Repository, Future]] = deque()

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            while True:
                if cancelled():
                    summary.cancelled = True
                    break
                if limit and len(followers) >= limit:
                    break

                # Never more checks in flight than followers still wanted
                window = self.max_workers if not limit else min(self.max_workers, limit - len(followers))
                while len(in_flight) < window:
                    repo = next(remaining, None)
                    if repo is None:
                        break
                    in_flight.append((repo, executor.submit(self._check, repo, workdir, my_url)))
                if not in_flight:
                    break

                repo, future = in_flight.popleft()
                try:
                    result = future.result()
                except Exception as e:
                    result = Result.fail(errors.UNEXPECTED_ERROR, str(e))

                if not result.success:
                    logger.warning(f"Could not get lists of {repo.url}: {result.error.message}")
                    summary.add_detail(OperationDetail(
                        url=repo.url,
                        branch=repo.branch,
                        status=OperationStatus.FAILED,
                        action="lists_unavailable",
                        error=result.error.message,
                        error_code=result.code,
                    ))
                    continue

                summary.add_detail(OperationDetail(
                    url=repo.url,
                    branch=repo.branch,
                    status=OperationStatus.SUCCESS,
                    action="follower" if result.data else "not_follower",
                ))
                if result.data:
                    followers.append(result.data)

            for _, pending in in_flight:
                pending.cancel()

        logger.info(f"{len(followers)} of {len(repos)} followed repositories follow {my_url}")
        return Result.ok(followers)

    @result_boundary(errors.READ_ERROR, "Failed to check follower")
    def is_follower(self, workdir: str, url: str) -> Result[bool]:
        """
        True when any list of the repository at url contains our URL.

        A missing origin is an error; failing to read the target's lists
        is not, it just means False.
        """
        my_url = self._my_url(workdir)
        if not my_url:
            return Result.fail(errors.NO_ORIGIN, "Could not determine repository URL")

        parsed = parse_repository_id(url)
        repo = self.repositories.load_external_repository(parsed.repository, parsed.branch)
        if repo is not None and repo.path:
            lists = self._lists_of(repo, workdir)
        else:
            lists = self.lists.get_remote_lists(url, workdir)
        if not lists.success:
            logger.debug(f"Could not read lists of {url}: {lists.error.message}")
            return Result.ok(False)
        return Result.ok(find_list_containing(lists.data, my_url) is not None)

    def get_follower_count(self, workdir: str) -> Result[int]:
        result = self.get_followers(workdir)
        if not result.success:
            return Result.from_error(result.error)
        return Result.ok(len(result.data))

