"""
Repository service for gitsocial.

Resolves repository scopes into Repository objects and keeps their
isolated clones current:
- workspace:my, following, all and repository:<url> scopes
- Bulk fetching of followed repositories with per-repository outcomes
- Making sure a date range of one repository is fetched and cached
"""

import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
import logging

from .. import errors
from ..config import load_config
from ..domain.operation import OperationDetail, OperationStatus, OperationSummary
from ..domain.repository import CloneState, Repository, to_date_string
from ..domain.result import Result
from ..errors import result_boundary
from ..infra.git_client import GitClient
from ..protocol import (
    DEFAULT_BRANCH,
    display_name,
    is_workspace_storage_name,
    normalize_url,
    parse_repository_id,
)
from . import workspace
from .cache_service import ContentCache
from .list_service import ListService
from .storage_service import UPSTREAM, StorageService

logger = logging.getLogger(__name__)

SCOPES = ('workspace:my', 'following', 'all')
REPOSITORY_SCOPE_PREFIX = 'repository:'


@dataclass
class RepositoryFilter:
    """Post-load filtering of a scope's repositories."""
    types: Optional[List[str]] = None
    social_enabled: Optional[bool] = None
    limit: Optional[int] = None
    skip_cache: bool = False


def create_repository_from_url(
    url: str,
    branch: str = DEFAULT_BRANCH,
    type: str = 'other',
    social_enabled: bool = True,
    remote_name: Optional[str] = None,
    lists: Iterable[str] = ()
) -> Repository:
    """
    Repository object for a URL with a consistent display name.

    Example:
        >>> create_repository_from_url("https://github.com/user/repo.git").name
        'user/repo'
    """
    return Repository(
        id=f"{url}#branch:{branch}",
        url=url,
        name=display_name(url),
        branch=branch,
        type=type,
        social_enabled=social_enabled,
        remote_name=remote_name,
        lists=tuple(lists),
    )


def apply_repository_filters(
    repositories: List[Repository],
    types: Optional[List[str]] = None,
    social_enabled: Optional[bool] = None,
    limit: Optional[int] = None
) -> List[Repository]:
    filtered = repositories
    if types:
        filtered = [r for r in filtered if r.type in types]
    if social_enabled is not None:
        filtered = [r for r in filtered if r.social_enabled == social_enabled]
    if limit and limit > 0:
        filtered = filtered[:limit]
    return filtered


def _with_clone_state(repo: Repository, path: str, state: Optional[CloneState]) -> Repository:
    return Repository(
        id=repo.id,
        url=repo.url,
        name=repo.name,
        branch=repo.branch,
        type=repo.type,
        social_enabled=repo.social_enabled,
        path=path,
        last_fetch_time=state.last_fetch_time if state else None,
        fetched_ranges=tuple(state.fetched_ranges) if state else (),
        lists=repo.lists,
        remote_name=repo.remote_name,
    )


class RepositoryService:
    """
    Service for repository scopes and clone maintenance.

    Example:
        service = RepositoryService()
        following = service.get_repositories("/path/to/workspace", "following")
        summary = service.fetch_updates("/path/to/workspace").data
        print(f"Fetched {summary.fetched}, failed {summary.failed}")
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        git_client: Optional[GitClient] = None,
        storage: Optional[StorageService] = None,
        lists: Optional[ListService] = None,
        cache: Optional[ContentCache] = None,
        storage_base: Optional[str] = None
    ):
        """
        Initialize RepositoryService.

        Args:
            config: Configuration dict (loads default if None)
            git_client: GitClient instance (creates new if None)
            storage: StorageService for isolated clones (creates new if None)
            lists: ListService for the workspace lists (creates new if None)
            cache: Session cache (creates new if None)
            storage_base: Clone root (defaults to storage.base from config)
        """
        self.config = config or load_config()
        self.git = git_client or GitClient()
        self.storage = storage or StorageService(self.config, self.git)
        self.cache = cache or ContentCache(self.config, self.git, self.storage)
        self.lists = lists or ListService(
            self.config, self.git, storage=self.storage, cache=self.cache, storage_base=storage_base
        )
        self.storage_base = storage_base or self.config.get('storage', {}).get('base')
        self.max_workers = self.config.get('fetch', {}).get('max_workers', 4)

    # -------------------------------------------------------------------------
    # Workspace configuration
    # -------------------------------------------------------------------------

    def get_origin_url(self, workdir: str) -> str:
        return workspace.get_origin_url(self.git, workdir)

    def get_social_config(self, workdir: str) -> Optional[Dict[str, Any]]:
        return workspace.get_social_config(self.git, workdir)

    @result_boundary(errors.WRITE_ERROR, "Failed to set social config")
    def set_social_config(self, workdir: str, config: Dict[str, Any]) -> Result[str]:
        result = workspace.set_social_config(self.git, workdir, config)
        if result.success:
            self.cache.refresh(all=True)
        return result

    def get_configured_branch(self, workdir: str) -> str:
        return workspace.get_configured_branch(self.git, workdir)

    # -------------------------------------------------------------------------
    # Loaders
    # -------------------------------------------------------------------------

    def load_workspace_repository(self, workdir: str) -> List[Repository]:
        """The workspace as a one-element list."""
        branch = self.get_configured_branch(workdir)
        my_url = workspace.get_my_url(self.git, workdir)
        url = my_url or workdir
        name = display_name(my_url) if my_url else (os.path.basename(os.path.normpath(workdir)) or 'workspace')
        return [Repository(
            id=f"{url}#branch:{branch}",
            url=url,
            name=name,
            branch=branch,
            type='workspace',
            path=workdir,
        )]

    def load_following_repositories(self, workdir: str) -> List[Repository]:
        """
        Unique repositories across all workspace lists.

        Entries are keyed by normalized URL; the first list naming a
        repository decides its branch, later lists are only recorded in
        `lists`.
        """
        result = self.lists.get_lists(workdir)
        if not result.success:
            logger.warning(f"Failed to read lists of {workdir}: {result.error.message}")
            return []

        found: Dict[str, Repository] = {}
        for social_list in result.data:
            for entry in social_list.repositories:
                parsed = parse_repository_id(entry)
                if not parsed.repository:
                    continue
                key = normalize_url(parsed.repository)

                existing = found.get(key)
                if existing:
                    if social_list.name not in existing.lists:
                        found[key] = existing.with_lists(existing.lists + (social_list.name,))
                    continue

                repo = create_repository_from_url(parsed.repository, parsed.branch, lists=[social_list.name])
                if self.storage_base:
                    path = self.storage.get_storage_dir(self.storage_base, parsed.repository)
                    if os.path.isdir(path):
                        repo = _with_clone_state(repo, path, self.storage.read_repository_config(path))
                found[key] = repo

        return list(found.values())

    def load_all_repositories(self, workdir: str) -> List[Repository]:
        """Workspace, followed repositories and every other clone in storage."""
        repositories = self.load_workspace_repository(workdir) + self.load_following_repositories(workdir)
        if not self.storage_base:
            return repositories

        known = {normalize_url(r.url) for r in repositories}
        clones_dir = self.storage.repositories_dir(self.storage_base)
        if not clones_dir.is_dir():
            return repositories

        for entry in sorted(clones_dir.iterdir()):
            if not entry.is_dir() or is_workspace_storage_name(entry.name):
                continue
            url = self.git.get_config(str(entry), f'remote.{UPSTREAM}.url')
            if not url or normalize_url(url) in known:
                continue

            known.add(normalize_url(url))
            state = self.storage.read_repository_config(str(entry))
            branch = (state.branch if state else None) or self.get_configured_branch(str(entry))
            repo = create_repository_from_url(normalize_url(url), branch)
            repositories.append(_with_clone_state(repo, str(entry), state))

        return repositories

    def load_external_repository(
        self,
        url: str,
        branch: Optional[str] = None,
        ensure_cloned: bool = False
    ) -> Optional[Repository]:
        """
        A single repository outside the workspace lists.

        With ensure_cloned, a temporary clone is created first. The
        repository is returned even when no clone exists.
        """
        normalized = normalize_url(url)
        branch = branch or DEFAULT_BRANCH

        if self.storage_base and ensure_cloned:
            ensure = self.storage.ensure_repository(self.storage_base, normalized, branch, is_persistent=False)
            if not ensure.success:
                logger.error(f"Failed to ensure external repository {normalized}: {ensure.error.message}")
                return None

        repo = create_repository_from_url(normalized, branch)
        if self.storage_base:
            path = self.storage.get_storage_dir(self.storage_base, normalized)
            if os.path.isdir(path):
                repo = _with_clone_state(repo, path, self.storage.read_repository_config(path))
        return repo

    # -------------------------------------------------------------------------
    # Scopes
    # -------------------------------------------------------------------------

    @result_boundary(errors.READ_ERROR, "Failed to get repositories")
    def get_repositories(
        self,
        workdir: str,
        scope: str = 'workspace:my',
        filter: Optional[RepositoryFilter] = None
    ) -> Result[List[Repository]]:
        """
        Repositories in a scope.

        Args:
            workdir: Workspace path
            scope: workspace:my, following, all or repository:<url>[#branch:b]
            filter: Optional post-load filter

        Returns:
            Result with the filtered repositories
        """
        filter = filter or RepositoryFilter()

        if scope not in SCOPES and not (scope.startswith(REPOSITORY_SCOPE_PREFIX)
                                        and scope[len(REPOSITORY_SCOPE_PREFIX):]):
            return Result.fail(errors.INVALID_SCOPE, f"Unknown repository scope: {scope}")

        if not filter.skip_cache:
            cached = self.cache.get_cached_repositories(workdir, scope)
            if cached is not None:
                return Result.ok(apply_repository_filters(cached, filter.types, filter.social_enabled, filter.limit))

        if scope == 'workspace:my':
            repositories = self.load_workspace_repository(workdir)
        elif scope == 'following':
            repositories = self.load_following_repositories(workdir)
        elif scope == 'all':
            repositories = self.load_all_repositories(workdir)
        else:
            parsed = parse_repository_id(scope[len(REPOSITORY_SCOPE_PREFIX):])
            logger.debug(f"External repository scope: url='{parsed.repository}', branch='{parsed.branch}'")
            repo = self.load_external_repository(parsed.repository, parsed.branch)
            repositories = [repo] if repo else []

        if not filter.skip_cache and repositories:
            self.cache.store_repositories(workdir, scope, repositories)

        return Result.ok(apply_repository_filters(repositories, filter.types, filter.social_enabled, filter.limit))

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def _fetch_one(self, repo: Repository, since: Optional[str], branch: Optional[str]) -> OperationDetail:
        ensure = self.storage.ensure_repository(self.storage_base, repo.url, repo.branch, is_persistent=True)
        if not ensure.success:
            logger.warning(f"Failed to ensure {repo.id}: {ensure.error.message}")
            return OperationDetail(
                url=repo.url,
                branch=repo.branch,
                status=OperationStatus.FAILED,
                action="ensure_failed",
                error=ensure.error.message,
                error_code=ensure.code,
            )

        fetch = self.storage.fetch_repository(self.storage_base, repo.url, branch or repo.branch, since)
        if not fetch.success:
            logger.warning(f"Failed to fetch {repo.id}: {fetch.error.message}")
            return OperationDetail(
                url=repo.url,
                branch=repo.branch,
                status=OperationStatus.FAILED,
                action="fetch_failed",
                error=fetch.error.message,
                error_code=fetch.code,
            )

        if fetch.data.skipped:
            logger.debug(f"Skipped {repo.id}: range already fetched")
            return OperationDetail(url=repo.url, branch=repo.branch, status=OperationStatus.SKIPPED, action="skipped")

        logger.debug(f"Fetched {repo.id}")
        return OperationDetail(url=repo.url, branch=repo.branch, status=OperationStatus.SUCCESS, action="fetched")

    @result_boundary(errors.FETCH_ERROR, "Failed to fetch updates")
    def fetch_updates(
        self,
        workdir: str,
        scope: str = 'following',
        since: Any = None,
        branch: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> Result[OperationSummary]:
        """
        Ensure and fetch every repository in a scope.

        A failing repository is recorded in the summary and does not stop
        the others. Fetched repositories have their cached posts refreshed.

        Args:
            workdir: Workspace path
            scope: Repository scope (following by default)
            since: Start of the wanted date range
            branch: Branch overriding each repository's own
            cancel_event: When set, queued repositories are not fetched

        Returns:
            Result with an OperationSummary
        """
        if not self.storage_base:
            return Result.fail(errors.NOT_INITIALIZED, "Repository storage is not configured")

        repos = self.get_repositories(workdir, scope)
        if not repos.success:
            return Result.from_error(repos.error)

        summary = OperationSummary(operation="fetch_updates")
        since_str = to_date_string(since) if since else None

        targets = []
        for repo in repos.data:
            if repo.is_workspace:
                continue
            if not repo.branch:
                summary.add_detail(OperationDetail(
                    url=repo.url,
                    status=OperationStatus.FAILED,
                    action="missing_branch",
                    error="Repository missing branch information",
                    error_code=errors.MISSING_BRANCH,
                ))
                continue
            targets.append(repo)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self._fetch_one, r, since_str, branch): r for r in targets}

            for future in as_completed(futures):
                if cancel_event is not None and cancel_event.is_set() and not summary.cancelled:
                    summary.cancelled = True
                    for pending in futures:
                        pending.cancel()
                if future.cancelled():
                    continue
                summary.add_detail(future.result())

        fetched = summary.fetched_repositories
        if fetched:
            logger.debug(f"Refreshing cache for {len(fetched)} repositories")
            self.cache.refresh(repositories=fetched, workdir=workdir, storage_base=self.storage_base)

        if summary.failed:
            logger.warning(f"Failed to fetch {summary.failed} repositories: {summary.failures}")
        logger.info(
            f"fetch_updates: {summary.fetched} fetched, {summary.skipped} skipped, {summary.failed} failed"
        )
        return Result.ok(summary)

    @result_boundary(errors.FETCH_ERROR, "Failed to ensure data for date range")
    def ensure_data_for_date_range(
        self,
        workdir: str,
        storage_base: str,
        url: str,
        branch: str,
        since: Any,
        is_persistent: bool = False
    ) -> Result[None]:
        """
        Make one repository's posts since a date available in the cache.

        Ensure and fetch both pass their cost gates, so repeating the call
        for a covered range costs no network. Posts are loaded into the
        cache even when the fetch was skipped.
        """
        since_str = to_date_string(since)
        logger.debug(f"Ensuring data for {url}#branch:{branch} since {since_str}")

        ensure = self.storage.ensure_repository(storage_base, url, branch, is_persistent=is_persistent)
        if not ensure.success:
            return Result.fail(
                errors.INIT_ERROR,
                f"Failed to ensure repository: {ensure.error.message}",
                ensure.error.to_dict(),
            )

        fetch = self.storage.fetch_repository(storage_base, url, branch, since_str)
        if not fetch.success:
            return Result.fail(
                errors.FETCH_ERROR,
                f"Failed to fetch repository: {fetch.error.message}",
                fetch.error.to_dict(),
            )

        self.cache.load_repository_posts(workdir, url, branch, storage_base)
        return Result.ok(None)

    def cleanup_storage(self) -> None:
        """Remove expired and incomplete clones."""
        if not self.storage_base:
            return
        result = self.storage.cleanup(self.storage_base)
        if not result.success:
            logger.warning(f"Storage cleanup failed: {result.error.message}")
