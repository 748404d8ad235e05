"""
List service for gitsocial.

Curated repository lists stored under refs/gitmsg/social/lists/<id>:
- CRUD on the lists of the workspace
- Adding and removing repositories (always stored branch-qualified)
- Reading the lists of other repositories, through a workspace remote or
  an isolated clone
- Following another repository's list and re-syncing the mirror

Every write goes through RefStore and keeps the session's list index
coherent before returning.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from .. import errors
from ..config import load_config
from ..domain.post import Post
from ..domain.result import Result
from ..domain.social_list import RUNTIME_FIELDS, ListSyncReport, ListVersion, SocialList
from ..errors import NotFoundError, ValidationError, result_boundary
from ..infra.git_client import GitClient
from ..infra.ref_store import RefStore
from ..protocol import (
    DEFAULT_BRANCH,
    LIST_REF_PREFIX,
    base_url,
    create_ref,
    is_repository_location,
    normalize_url,
    parse_ref,
    parse_repository_id,
    validate_list_name,
)
from .cache_service import ContentCache
from .storage_service import StorageService

logger = logging.getLogger(__name__)

UPSTREAM_LIST_PREFIX = 'refs/remotes/upstream/gitmsg/social/lists/'
REMOTE_LIST_PATTERN = 'refs/gitmsg/social/lists/*'


def branch_qualified(entry: str) -> str:
    """Normalized url#branch:b form of a list entry (main when it has no branch)."""
    return parse_repository_id(entry).to_string()


def _loads(message: str) -> Any:
    try:
        return json.loads(message)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e}") from e


class ListService:
    """
    Service for curated repository lists.

    Example:
        service = ListService()
        service.create_list("/path/to/workspace", "reading", "Reading list")
        service.add_repository("/path/to/workspace", "reading", "https://github.com/u/r#branch:main")
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        git_client: Optional[GitClient] = None,
        store: Optional[RefStore] = None,
        storage: Optional[StorageService] = None,
        cache: Optional[ContentCache] = None,
        storage_base: Optional[str] = None
    ):
        """
        Initialize ListService.

        Args:
            config: Configuration dict (loads default if None)
            git_client: GitClient instance (creates new if None)
            store: RefStore for list records (creates new if None)
            storage: StorageService for isolated clones (creates new if None)
            cache: Session cache holding the list index (creates new if None)
            storage_base: Clone root (defaults to storage.base from config)
        """
        self.config = config or load_config()
        self.git = git_client or GitClient()
        self.store = store or RefStore(self.git)
        self.storage = storage or StorageService(self.config, self.git)
        self.cache = cache or ContentCache(self.config, self.git, self.storage)
        self.storage_base = storage_base or self.config.get('storage', {}).get('base')

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def _read(self, workdir: str, list_id: str) -> Optional[SocialList]:
        result = self.store.read(workdir, list_id)
        if not result.success or result.data is None:
            return None
        try:
            return SocialList.from_dict(result.data, fallback_id=list_id)
        except ValueError as e:
            logger.warning(f"Skipping malformed list '{list_id}' in {workdir}: {e}")
            return None

    def _require(self, workdir: str, list_id: str) -> SocialList:
        social_list = self._read(workdir, list_id)
        if social_list is None:
            raise NotFoundError(errors.LIST_NOT_FOUND, f"List '{list_id}' not found")
        return social_list

    def _read_ref_lists(self, path: str, prefix: str) -> List[SocialList]:
        """Lists stored under a ref prefix, read straight from commit messages."""
        lists = []
        for ref in self.git.for_each_ref(path, prefix):
            list_id = ref[len(prefix):]
            message = self.git.commit_message(path, ref)
            if not message:
                continue
            try:
                lists.append(SocialList.from_dict(_loads(message), fallback_id=list_id))
            except ValueError as e:
                logger.warning(f"Skipping corrupt list '{list_id}' at {ref}: {e}")
        return lists

    def _write(self, workdir: str, social_list: SocialList) -> Result[str]:
        return self.store.write(workdir, social_list.id, social_list.to_storage_dict())

    def _origin_list_ids(self, workdir: str) -> Optional[set]:
        """Ids of lists present on origin, or None when origin cannot tell."""
        if not self.git.remote_url(workdir, 'origin'):
            return None
        result = self.git.ls_remote(workdir, 'origin', REMOTE_LIST_PATTERN)
        if not result.success:
            logger.debug(f"Could not list origin lists for {workdir}: {result.error.message}")
            return None
        return {ref[len(LIST_REF_PREFIX):] for ref in result.data if ref.startswith(LIST_REF_PREFIX)}

    @result_boundary(errors.READ_ERROR, "Failed to get lists")
    def get_lists(self, workdir: str) -> Result[List[SocialList]]:
        """
        All lists of a repository.

        For an isolated clone (no local list refs, an upstream remote) the
        clone is fetched first and the upstream list refs are read.
        """
        cached = self.cache.get_cached_lists(workdir)
        if cached is not None:
            logger.debug(f"Returning {len(cached)} lists for {workdir} from index")
            return Result.ok(cached)

        keys = self.store.enumerate(workdir)
        if not keys:
            upstream = self.git.remote_url(workdir, 'upstream')
            if upstream and self.storage.read_repository_config(workdir):
                return self._isolated_clone_lists(workdir, upstream)

        lists = []
        for key in keys:
            social_list = self._read(workdir, key)
            if social_list is not None:
                lists.append(social_list)

        on_origin = self._origin_list_ids(workdir)
        if on_origin is not None:
            lists = [lst.with_flags(is_unpushed=lst.id not in on_origin) for lst in lists]

        self.cache.store_lists(workdir, lists)
        logger.info(f"Loaded {len(lists)} lists from {workdir}")
        return Result.ok(lists)

    def _isolated_clone_lists(self, path: str, upstream: str) -> Result[List[SocialList]]:
        if self.storage_base:
            # No branch: the fetch uses the one recorded when the clone was created
            fetch = self.storage.fetch_repository(self.storage_base, upstream)
            if not fetch.success:
                if fetch.code == errors.LOCK_FILE_ERROR:
                    logger.debug(f"Skipping {upstream} after lock file cleanup")
                    return Result.ok([])
                logger.warning(f"Failed to fetch latest lists of {upstream}: {fetch.error.message}")

        lists = self._read_ref_lists(path, UPSTREAM_LIST_PREFIX)
        logger.info(f"Found {len(lists)} lists in isolated clone of {upstream}")
        return Result.ok(lists)

    @result_boundary(errors.READ_ERROR, "Failed to get list")
    def get_list(self, workdir: str, list_id: str) -> Result[Optional[SocialList]]:
        """A list by id; data is None when it does not exist."""
        cached = self.cache.get_cached_list(workdir, list_id)
        if cached is not None:
            return Result.ok(cached)
        return Result.ok(self._read(workdir, list_id))

    @result_boundary(errors.READ_ERROR, "Failed to get list repositories")
    def get_list_repositories(self, workdir: str, list_id: str) -> Result[List[str]]:
        result = self.get_list(workdir, list_id)
        if not result.success:
            return Result.from_error(result.error)
        if result.data is None:
            return Result.fail(errors.LIST_NOT_FOUND, f"List '{list_id}' not found")
        return Result.ok(list(result.data.repositories))

    @result_boundary(errors.READ_ERROR, "Failed to count unpushed lists")
    def get_unpushed_lists_count(self, workdir: str) -> Result[int]:
        """Lists that exist locally but not on origin (all of them without origin)."""
        keys = self.store.enumerate(workdir)
        if not keys:
            return Result.ok(0)
        on_origin = self._origin_list_ids(workdir) or set()
        return Result.ok(sum(1 for key in keys if key not in on_origin))

    @result_boundary(errors.GIT_ERROR, "Failed to get list history")
    def get_list_history(
        self,
        workdir: str,
        list_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None
    ) -> Result[List[ListVersion]]:
        """Versions of a list, newest first."""
        if not self.git.rev_parse(workdir, self.store.ref_for(list_id)):
            return Result.fail(errors.LIST_NOT_FOUND, f"List '{list_id}' not found")
        return self.store.history(workdir, list_id, since=since, until=until)

    def is_post_in_list(self, post: Post, list_id: str, workdir: str) -> bool:
        """True when the post's repository is a member of the list."""
        social_list = self.cache.get_cached_list(workdir, list_id) or self._read(workdir, list_id)
        if not social_list:
            return False
        repo = base_url(post.repository)
        return any(base_url(r) == repo for r in social_list.repositories)

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    @result_boundary(errors.WRITE_ERROR, "Failed to create list")
    def create_list(self, workdir: str, list_id: str, name: Optional[str] = None) -> Result[SocialList]:
        """
        Create an empty list.

        Returns:
            Result with the new list (is_unpushed set, it exists only locally)
        """
        if not validate_list_name(list_id):
            return Result.fail(errors.INVALID_LIST_NAME, 'List ID must match pattern [a-zA-Z0-9_-]{1,40}')

        if self._read(workdir, list_id) is not None:
            return Result.fail(errors.LIST_EXISTS, f"List '{list_id}' already exists")

        social_list = SocialList(id=list_id, name=name or list_id)
        write = self._write(workdir, social_list)
        if not write.success:
            return Result.from_error(write.error)

        created = social_list.with_flags(is_unpushed=True)
        self.cache.refresh(lists=[list_id])
        self.cache.store_list(workdir, created)
        logger.info(f"Created list '{list_id}' in {workdir}")
        return Result.ok(created)

    @result_boundary(errors.WRITE_ERROR, "Failed to update list")
    def update_list(self, workdir: str, list_id: str, updates: Dict[str, Any]) -> Result[SocialList]:
        """
        Merge updates into a list and append the result as a new version.

        id and version are never changed; runtime-only fields are dropped.
        """
        existing = self._require(workdir, list_id)

        merged = existing.to_storage_dict()
        merged.update({k: v for k, v in updates.items() if k not in RUNTIME_FIELDS})
        merged['id'] = existing.id
        merged['version'] = existing.version
        if 'repositories' in updates:
            merged['repositories'] = list(updates['repositories'] or [])

        updated = SocialList.from_dict(merged, fallback_id=list_id)
        write = self._write(workdir, updated)
        if not write.success:
            return Result.from_error(write.error)

        previous = self.cache.get_cached_list(workdir, list_id)
        if previous is not None:
            updated = updated.with_flags(is_unpushed=previous.is_unpushed)
        self.cache.refresh(lists=[list_id])
        self.cache.store_list(workdir, updated)
        logger.info(f"Updated list '{list_id}' ({', '.join(sorted(updates)) or 'no fields'})")
        return Result.ok(updated)

    @result_boundary(errors.DELETE_ERROR, "Failed to delete list")
    def delete_list(self, workdir: str, list_id: str) -> Result[None]:
        self._require(workdir, list_id)

        result = self.store.delete(workdir, list_id)
        if not result.success:
            return result
        self.cache.refresh(lists=[list_id])
        return Result.ok()

    @result_boundary(errors.WRITE_ERROR, "Failed to add repository to list")
    def add_repository(self, workdir: str, list_id: str, url: str) -> Result[str]:
        """
        Add a repository to a list.

        A URL without #branch: is resolved to the remote's default branch.

        Returns:
            Result with the stored entry (normalized url#branch:b)
        """
        if not is_repository_location(base_url(url)):
            raise ValidationError(errors.INVALID_URL, f"Invalid repository URL: {url}")
        existing = self._require(workdir, list_id)

        if '#branch:' in url:
            entry = branch_qualified(url)
        else:
            detected = self.git.get_default_branch(url, workdir)
            if not detected.success:
                return Result.fail(errors.BRANCH_DETECTION_FAILED,
                                   f"Could not detect default branch for repository: {url}",
                                   detected.error.to_dict() if detected.error else None)
            entry = f"{normalize_url(url)}#branch:{detected.data}"

        base = base_url(entry)
        if any(base_url(r) == base for r in existing.repositories):
            return Result.fail(errors.REPOSITORY_EXISTS,
                               f"Repository '{url}' already exists in list '{list_id}'")

        update = self.update_list(workdir, list_id, {'repositories': [*existing.repositories, entry]})
        if not update.success:
            return Result.from_error(update.error)

        self.cache.refresh(repositories=[entry], lists=[list_id])
        logger.info(f"Added '{entry}' to list '{list_id}'")
        return Result.ok(entry)

    @result_boundary(errors.WRITE_ERROR, "Failed to remove repository from list")
    def remove_repository(self, workdir: str, list_id: str, url: str) -> Result[None]:
        """Remove a repository, matched by base URL whatever its branch."""
        existing = self._require(workdir, list_id)

        target = base_url(url)
        remaining = [r for r in existing.repositories if base_url(r) != target]
        if len(remaining) == len(existing.repositories):
            return Result.fail(errors.REPOSITORY_NOT_FOUND,
                               f"Repository '{url}' not found in list '{list_id}'")

        update = self.update_list(workdir, list_id, {'repositories': remaining})
        if not update.success:
            return Result.from_error(update.error)

        logger.info(f"Removed '{target}' from list '{list_id}' "
                    f"({len(existing.repositories)} -> {len(remaining)})")
        return Result.ok()

    # -------------------------------------------------------------------------
    # Other repositories' lists
    # -------------------------------------------------------------------------

    def _mark_followed(self, workdir: str, remote_lists: List[SocialList], repository: str) -> List[SocialList]:
        workspace = self.get_lists(workdir)
        if not workspace.success:
            return remote_lists

        followed = set()
        for local in workspace.data:
            if not local.source:
                continue
            parsed = parse_ref(local.source)
            if parsed.type == 'list' and parsed.repository == repository:
                followed.add(parsed.value)
        return [lst.with_flags(is_followed_locally=lst.id in followed) for lst in remote_lists]

    def _resolve_branch(self, url: str, workdir: str) -> str:
        if '#branch:' in url:
            return parse_repository_id(url).branch
        if self.storage_base:
            state = self.storage.read_repository_config(self.storage.get_storage_dir(self.storage_base, url))
            if state and state.branch:
                return state.branch
        detected = self.git.get_default_branch(base_url(url), workdir)
        if detected.success:
            return detected.data
        logger.debug(f"Default branch of {url} unknown, using {DEFAULT_BRANCH}")
        return DEFAULT_BRANCH

    @result_boundary(errors.READ_ERROR, "Failed to get remote lists")
    def get_remote_lists(self, url: str, workdir: str) -> Result[List[SocialList]]:
        """
        Lists of another repository.

        A workspace remote pointing at the repository is used when there is
        one; otherwise the repository is read through a temporary isolated
        clone.
        """
        repository = base_url(url)

        for name, remote_url in self.git.list_remotes(workdir).items():
            if normalize_url(remote_url) == repository:
                logger.debug(f"{repository} is workspace remote '{name}'")
                lists = self._workspace_remote_lists(workdir, name)
                return Result.ok(self._mark_followed(workdir, lists, repository))

        if not self.storage_base:
            return Result.fail(errors.NOT_INITIALIZED, "No storage base configured for isolated repositories")

        branch = self._resolve_branch(url, workdir)
        ensure = self.storage.ensure_repository(self.storage_base, repository, branch, is_persistent=False)
        if not ensure.success:
            logger.warning(f"Failed to ensure {repository}: {ensure.error.message}")
            return Result.from_error(ensure.error)

        lists = self._read_ref_lists(ensure.data, UPSTREAM_LIST_PREFIX)
        logger.info(f"Loaded {len(lists)} lists of {repository}")
        return Result.ok(self._mark_followed(workdir, lists, repository))

    def _workspace_remote_lists(self, workdir: str, remote: str) -> List[SocialList]:
        prefix = f'refs/remotes/{remote}/gitmsg/social/lists/'
        fetch = self.git.execute(
            workdir,
            ['fetch', remote, f'+refs/gitmsg/social/lists/*:{prefix}*', '--no-tags'],
            network=True,
        )
        if not fetch.success:
            logger.warning(f"Failed to fetch lists from remote '{remote}': {fetch.error.message}")
        return self._read_ref_lists(workdir, prefix)

    # -------------------------------------------------------------------------
    # Following lists
    # -------------------------------------------------------------------------

    def _source_list(self, workdir: str, repository: str, list_id: str) -> Result[SocialList]:
        remote = self.get_remote_lists(repository, workdir)
        if not remote.success:
            return Result.from_error(remote.error)
        source = next((lst for lst in remote.data if lst.id == list_id), None)
        if source is None:
            return Result.fail(errors.SOURCE_NOT_FOUND, f"List '{list_id}' not found in {repository}")
        return Result.ok(source)

    @staticmethod
    def _mirrored_entries(source: SocialList) -> List[str]:
        entries: Dict[str, str] = {}
        for repo in source.repositories:
            entry = branch_qualified(repo)
            entries.setdefault(base_url(entry), entry)
        return list(entries.values())

    @result_boundary(errors.WRITE_ERROR, "Failed to follow list")
    def follow_list(
        self,
        workdir: str,
        source_repo: str,
        source_list_id: str,
        target_id: Optional[str] = None
    ) -> Result[str]:
        """
        Mirror another repository's list into the workspace.

        Returns:
            Result with the id of the new local list
        """
        if not validate_list_name(source_list_id):
            return Result.fail(errors.INVALID_LIST_ID, "Source list ID format invalid")
        if target_id is not None and not validate_list_name(target_id):
            return Result.fail(errors.INVALID_LIST_ID, "Target list ID format invalid")
        if not is_repository_location(base_url(source_repo)):
            raise ValidationError(errors.INVALID_URL, f"Invalid repository URL: {source_repo}")

        source = self._source_list(workdir, source_repo, source_list_id)
        if not source.success:
            return Result.from_error(source.error)

        new_id = target_id or source_list_id
        if self._read(workdir, new_id) is not None:
            return Result.fail(errors.LIST_EXISTS, f"List '{new_id}' already exists")

        entries = self._mirrored_entries(source.data)
        mirror = SocialList(
            id=new_id,
            name=source.data.name,
            repositories=tuple(entries),
            source=create_ref('list', source_list_id, base_url(source_repo)),
        )
        write = self._write(workdir, mirror)
        if not write.success:
            return Result.from_error(write.error)

        self.cache.refresh(lists=[new_id], repositories=entries)
        self.cache.store_list(workdir, mirror.with_flags(is_unpushed=True))
        logger.info(f"Following {mirror.source} as '{new_id}' ({len(entries)} repositories)")
        return Result.ok(new_id)

    @result_boundary(errors.WRITE_ERROR, "Failed to sync followed list")
    def sync_followed_list(self, workdir: str, list_id: str) -> Result[ListSyncReport]:
        """Re-copy a followed list from its source and report what changed."""
        local = self._require(workdir, list_id)
        if not local.source:
            return Result.fail(errors.NOT_FOLLOWED, f"List '{list_id}' is not followed")

        parsed = parse_ref(local.source)
        if parsed.type != 'list' or not parsed.repository or not parsed.value:
            return Result.fail(errors.INVALID_SOURCE, f"Invalid source format: {local.source}")

        source = self._source_list(workdir, parsed.repository, parsed.value)
        if not source.success:
            return Result.from_error(source.error)

        entries = self._mirrored_entries(source.data)
        old = {base_url(r) for r in local.repositories}
        new = {base_url(r) for r in entries}
        report = ListSyncReport(
            list_id=list_id,
            added_repositories=[e for e in entries if base_url(e) not in old],
            removed_repositories=[r for r in local.repositories if base_url(r) not in new],
        )
        report.added = len(report.added_repositories)
        report.removed = len(report.removed_repositories)

        if report.added or report.removed:
            update = self.update_list(workdir, list_id, {'repositories': entries})
            if not update.success:
                return Result.from_error(update.error)
            self.cache.refresh(lists=[list_id], repositories=entries)

        logger.info(f"Synced '{list_id}' from {local.source}: +{report.added} -{report.removed}")
        return Result.ok(report)

    @result_boundary(errors.WRITE_ERROR, "Failed to unfollow list")
    def unfollow_list(self, workdir: str, list_id: str) -> Result[SocialList]:
        """Stop mirroring; the list keeps its repositories."""
        local = self._require(workdir, list_id)
        if not local.source:
            return Result.fail(errors.NOT_FOLLOWED, f"List '{list_id}' is not followed")
        return self.update_list(workdir, list_id, {'source': None})
