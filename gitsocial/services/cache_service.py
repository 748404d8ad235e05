"""
Content cache for gitsocial.

One ContentCache per GitSocial session holds everything derived from git
that is expensive to rebuild:
- Posts materialized from workspace and followed repositories, indexed by
  commit hash, repository id and list id
- The list index: the lists of each workspace, kept coherent with writes
- Repository metadata per (workdir, scope) with a per-scope time-to-live

Content has no age-based expiry; it leaves the cache through explicit
refresh() or size-bounded eviction of the oldest inserted posts.
"""

import threading
import time
from collections import OrderedDict
from datetime import date, datetime, time as dt_time
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple
import logging

from .. import errors
from ..config import load_config
from ..domain.post import Post
from ..domain.repository import Repository, current_week_monday, to_date_string, utc_naive
from ..domain.result import Result
from ..domain.social_list import SocialList
from ..errors import ValidationError, result_boundary
from ..infra.git_client import GitClient, GitCommit
from ..protocol import base_url, normalize_hash, parse_ref, parse_repository_id
from .post_source import GitMsgPostParser, PostParser
from .storage_service import StorageService
from .workspace import get_configured_branch, get_my_url

logger = logging.getLogger(__name__)

MIN_CACHE_SIZE = 1000
MAX_CACHE_SIZE = 1000000

# Seconds a repository listing stays valid, by scope
REPOSITORY_TTLS = {
    'workspace:my': 0,
    'following': 60 * 60,
    'all': 24 * 60 * 60,
}
REPOSITORY_SCOPE_TTL = 30 * 60


def repository_ttl(scope: str) -> int:
    if scope.startswith('repository:'):
        return REPOSITORY_SCOPE_TTL
    return REPOSITORY_TTLS.get(scope, 0)


def repository_key(repository: str, branch: Optional[str]) -> str:
    """Index key of a repository: normalized url#branch:b."""
    return f"{base_url(repository)}#branch:{branch or 'main'}"


def as_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return utc_naive(value)
    if isinstance(value, date):
        return datetime.combine(value, dt_time.min)
    return utc_naive(datetime.fromisoformat(str(value).replace('Z', '+00:00')))


def parse_scope(scope: str) -> Dict[str, Any]:
    """
    Split a scope string into its parts.

    Raises:
        ValidationError: For unknown or empty scopes
    """
    if scope in ('timeline', 'all', 'repository:my'):
        return {'kind': scope}

    def value_of(prefix: str) -> str:
        value = scope[len(prefix):].strip()
        if not value:
            raise ValidationError(errors.INVALID_SCOPE, f"Scope '{scope}' is missing its value")
        return value

    if scope.startswith('list:'):
        return {'kind': 'list', 'list': value_of('list:')}
    if scope.startswith('repository:'):
        target = value_of('repository:')
        if '/list:' in target:
            repository, _, list_id = target.partition('/list:')
            if not repository or not list_id:
                raise ValidationError(errors.INVALID_SCOPE, f"Invalid repository list scope '{scope}'")
            return {'kind': 'list', 'list': list_id, 'repository': repository}
        return {'kind': 'repository', 'repository': target}
    if scope.startswith('post:'):
        return {'kind': 'post', 'id': value_of('post:')}
    if scope.startswith('byId:'):
        ids = [i.strip() for i in value_of('byId:').split(',') if i.strip()]
        if not ids:
            raise ValidationError(errors.INVALID_SCOPE, "At least one post id is required")
        return {'kind': 'byId', 'ids': ids}
    if scope.startswith('thread:'):
        return {'kind': 'thread', 'id': value_of('thread:')}

    raise ValidationError(errors.INVALID_SCOPE, f"Invalid scope parameter: '{scope}'")


class ContentCache:
    """
    Session cache of posts, lists and repository metadata.

    All state is guarded by one re-entrant lock. Loading from git happens
    outside the lock; only the merge into the cache holds it.

    Example:
        cache = ContentCache(git_client=git, storage=storage)
        result = cache.get_posts(workdir, "timeline", storage_base=base)
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        git_client: Optional[GitClient] = None,
        storage: Optional[StorageService] = None,
        parser: Optional[PostParser] = None
    ):
        self.config = config or load_config()
        self.git = git_client or GitClient()
        self.storage = storage or StorageService(self.config, self.git)
        self.parser = parser or GitMsgPostParser()

        cache_config = self.config.get('cache', {})
        self.enabled = cache_config.get('enabled', True)
        self.max_size = self._clamp_size(cache_config.get('max_size', 100000))

        # Called with a workdir to load its lists when the index is incomplete
        self.list_loader: Optional[Callable[[str], List[SocialList]]] = None

        self._lock = threading.RLock()
        self._posts: 'OrderedDict[str, Post]' = OrderedDict()
        self._by_hash: Dict[str, Set[str]] = {}
        self._by_repository: Dict[str, Set[str]] = {}
        self._by_list: Dict[str, Set[str]] = {}
        self._cached_start_dates: Set[str] = set()
        self._initialized: Set[str] = set()
        self._configured_branches: Dict[str, str] = {}

        self._lists: Dict[str, Dict[str, SocialList]] = {}
        self._lists_complete: Set[str] = set()

        self._repositories: Dict[Tuple[str, str], Tuple[float, List[Repository]]] = {}

    @staticmethod
    def _clamp_size(size: int) -> int:
        if size < MIN_CACHE_SIZE:
            logger.warning(f"Cache size {size} too small, using minimum of {MIN_CACHE_SIZE}")
            return MIN_CACHE_SIZE
        if size > MAX_CACHE_SIZE:
            logger.warning(f"Cache size {size} too large, using maximum of {MAX_CACHE_SIZE}")
            return MAX_CACHE_SIZE
        return size

    # -------------------------------------------------------------------------
    # List index
    # -------------------------------------------------------------------------

    def get_cached_lists(self, workdir: str) -> Optional[List[SocialList]]:
        """All lists of workdir, or None when the index is not complete."""
        with self._lock:
            if not self.enabled or workdir not in self._lists_complete:
                return None
            return list(self._lists.get(workdir, {}).values())

    def get_cached_list(self, workdir: str, list_id: str) -> Optional[SocialList]:
        with self._lock:
            return self._lists.get(workdir, {}).get(list_id)

    def store_lists(self, workdir: str, lists: Iterable[SocialList]) -> None:
        """Replace the index of workdir and mark it complete."""
        if not self.enabled:
            return
        with self._lock:
            self._lists[workdir] = {lst.id: lst for lst in lists}
            self._lists_complete.add(workdir)
            for key in [k for k in self._by_list if k.startswith(f"{workdir}:")]:
                del self._by_list[key]

    def store_list(self, workdir: str, social_list: SocialList) -> None:
        """Insert or replace one list in an initialized index."""
        if not self.enabled:
            return
        with self._lock:
            if workdir in self._lists:
                self._lists[workdir][social_list.id] = social_list
                self._by_list.pop(f"{workdir}:{social_list.id}", None)

    def _lists_for(self, workdir: str) -> List[SocialList]:
        cached = self.get_cached_lists(workdir)
        if cached is not None:
            return cached
        if self.list_loader is None:
            return []
        return self.list_loader(workdir)

    # -------------------------------------------------------------------------
    # Repository metadata
    # -------------------------------------------------------------------------

    def get_cached_repositories(self, workdir: str, scope: str) -> Optional[List[Repository]]:
        """Repositories cached for (workdir, scope) while their TTL holds."""
        with self._lock:
            entry = self._repositories.get((workdir, scope))
            if not entry:
                return None
            stored_at, repositories = entry
            if time.monotonic() - stored_at >= repository_ttl(scope):
                del self._repositories[(workdir, scope)]
                return None
            return list(repositories)

    def store_repositories(self, workdir: str, scope: str, repositories: List[Repository]) -> None:
        if not self.enabled or repository_ttl(scope) <= 0:
            return
        with self._lock:
            self._repositories[(workdir, scope)] = (time.monotonic(), list(repositories))

    # -------------------------------------------------------------------------
    # Post index
    # -------------------------------------------------------------------------

    def _add_post(self, post: Post, workdir: str, lists: List[SocialList]) -> bool:
        """Insert or replace a post; returns True when it was new."""
        previous = self._posts.get(post.id)
        is_new = previous is None
        if previous is not None:
            self._unindex(previous)
        self._posts[post.id] = post
        self._posts.move_to_end(post.id)

        if post.hash:
            self._by_hash.setdefault(post.hash, set()).add(post.id)
        if post.repository:
            self._by_repository.setdefault(repository_key(post.repository, post.branch), set()).add(post.id)

        repo = base_url(post.repository)
        for lst in lists:
            if repo and any(base_url(r) == repo for r in lst.repositories):
                self._by_list.setdefault(f"{workdir}:{lst.id}", set()).add(post.id)

        self._evict()
        return is_new

    def _evict(self) -> None:
        while len(self._posts) > self.max_size:
            _, evicted = self._posts.popitem(last=False)
            self._unindex(evicted)

    @staticmethod
    def _discard(index: Dict[str, Set[str]], key: str, post_id: str) -> None:
        ids = index.get(key)
        if ids is not None:
            ids.discard(post_id)
            if not ids:
                del index[key]

    def _unindex(self, post: Post) -> None:
        if post.hash:
            self._discard(self._by_hash, post.hash, post.id)
        if post.repository:
            self._discard(self._by_repository, repository_key(post.repository, post.branch), post.id)
        for key in [k for k, ids in self._by_list.items() if post.id in ids]:
            self._discard(self._by_list, key, post.id)

    def _remove_post(self, post_id: str) -> None:
        post = self._posts.pop(post_id, None)
        if post is not None:
            self._unindex(post)

    def _clear_posts(self) -> None:
        self._posts.clear()
        self._by_hash.clear()
        self._by_repository.clear()
        self._by_list.clear()
        self._cached_start_dates.clear()
        self._initialized.clear()

    def get_post_by_id(self, post_id: str) -> Optional[Post]:
        """Look a post up by absolute id, or by relative #commit:x id."""
        with self._lock:
            post = self._posts.get(post_id)
            if post:
                return post
            parsed = parse_ref(post_id)
            if parsed.type != 'commit':
                return None
            for candidate_id in sorted(self._by_hash.get(parsed.value, ())):
                candidate = self._posts[candidate_id]
                if not parsed.repository or base_url(candidate.repository) == parsed.repository:
                    return candidate
            return None

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _workspace_posts(self, workdir: str, since: datetime) -> List[Post]:
        branch = get_configured_branch(self.git, workdir)
        with self._lock:
            self._configured_branches[workdir] = branch
        my_url = get_my_url(self.git, workdir) or ''
        commits = self.git.log(workdir, branch, since=since)
        return self._materialize(commits, my_url, branch)

    def _external_posts(
        self,
        storage_base: Optional[str],
        repositories: Dict[str, str],
        since: datetime
    ) -> List[Post]:
        if not storage_base:
            return []
        posts: List[Post] = []
        for url, branch in repositories.items():
            result = self.storage.get_commits(storage_base, url, branch, since=since)
            if not result.success:
                logger.debug(f"Skipping {url}#branch:{branch}: {result.error.message}")
                continue
            posts.extend(self._materialize(result.data, url, branch))
        return posts

    def _materialize(self, commits: List[GitCommit], repository_url: str, branch: str) -> List[Post]:
        posts = []
        for commit in commits:
            post = self.parser.parse(commit, repository_url, branch)
            if post:
                posts.append(post)
        return posts

    def _followed_repositories(self, lists: List[SocialList]) -> Dict[str, str]:
        repositories: Dict[str, str] = {}
        for lst in lists:
            for entry in lst.repositories:
                parsed = parse_repository_id(entry)
                repositories[parsed.repository] = parsed.branch
        return repositories

    def _load(self, workdir: str, storage_base: Optional[str], since: datetime) -> int:
        """Load workspace and followed posts since a date; returns posts added."""
        lists = self._lists_for(workdir)
        posts = self._workspace_posts(workdir, since)
        posts += self._external_posts(storage_base, self._followed_repositories(lists), since)

        added = 0
        with self._lock:
            for post in posts:
                if self._add_post(post, workdir, lists):
                    added += 1
        logger.debug(f"Loaded {len(posts)} posts ({added} new) for {workdir} since {since.date()}")
        return added

    def initialize(self, workdir: str, storage_base: Optional[str] = None, since: Any = None) -> None:
        """Load posts for workdir and mark the start date as covered."""
        if not self.enabled:
            return
        start = as_datetime(since) or datetime.combine(current_week_monday(), dt_time.min)
        self._load(workdir, storage_base, start)
        with self._lock:
            self._cached_start_dates.add(start.date().isoformat())
            self._initialized.add(workdir)

    def is_cache_range_covered(self, since: Any) -> bool:
        """True when posts have been loaded back to since or earlier."""
        since_str = to_date_string(since)
        with self._lock:
            return any(start <= since_str for start in self._cached_start_dates)

    def get_cached_ranges(self) -> List[str]:
        with self._lock:
            return sorted(self._cached_start_dates)

    @result_boundary(errors.UNEXPECTED_ERROR, "Failed to load additional posts")
    def load_additional_posts(self, workdir: str, storage_base: Optional[str], since: Any) -> Result[int]:
        """
        Extend the cache back to since without dropping what it holds.

        The start date counts as covered only when posts were added, so an
        empty answer does not hide data fetched later.
        """
        if not self.enabled or self.is_cache_range_covered(since):
            return Result.ok(0)

        start = as_datetime(since)
        added = self._load(workdir, storage_base, start)
        if added:
            with self._lock:
                self._cached_start_dates.add(start.date().isoformat())
            logger.info(f"Added {added} posts to cache back to {start.date()}")
        return Result.ok(added)

    @result_boundary(errors.UNEXPECTED_ERROR, "Failed to load repository posts")
    def load_repository_posts(self, workdir: str, url: str, branch: str, storage_base: str) -> Result[int]:
        """Load one repository's posts from the start of its oldest fetched range."""
        if not self.enabled:
            return Result.ok(0)

        oldest = self.storage.oldest_fetched_date(storage_base, url)
        since = datetime.combine(oldest or current_week_monday(), dt_time.min)
        posts = self._external_posts(storage_base, {parse_repository_id(url).repository: branch}, since)

        lists = self._lists_for(workdir)
        with self._lock:
            for post in posts:
                self._add_post(post, workdir, lists)
        logger.debug(f"Loaded {len(posts)} posts for {url}#branch:{branch}")
        return Result.ok(len(posts))

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    @result_boundary(errors.UNEXPECTED_ERROR, "Failed to refresh cache")
    def refresh(
        self,
        lists: Optional[List[str]] = None,
        repositories: Optional[List[str]] = None,
        hashes: Optional[List[str]] = None,
        all: bool = False,
        workdir: Optional[str] = None,
        storage_base: Optional[str] = None
    ) -> Result[None]:
        """
        Invalidate cached state.

        Args:
            lists: List ids to drop from the list index ("*" drops everything)
            repositories: Repository ids (url#branch:b) whose posts are dropped
            hashes: Commit hashes whose posts are dropped
            all: Drop everything
            workdir: Reload posts for this workspace afterwards
            storage_base: Clone root used for the reload
        """
        lists = lists or []
        repositories = repositories or []

        with self._lock:
            if all or '*' in lists:
                self._clear_posts()
                self._lists.clear()
                self._lists_complete.clear()
                self._repositories.clear()
                logger.debug("Cache cleared")
            else:
                for list_id in lists:
                    for index in self._lists.values():
                        index.pop(list_id, None)
                    for key in [k for k in self._by_list if k.endswith(f":{list_id}")]:
                        del self._by_list[key]
                if lists:
                    self._lists_complete.clear()
                    self._initialized.clear()
                    self._drop_repository_metadata(('following', 'all'))

                for repository_id in repositories:
                    for key in self._repository_keys(repository_id):
                        for post_id in list(self._by_repository.get(key, ())):
                            self._remove_post(post_id)
                if repositories:
                    self._initialized.clear()
                    self._drop_repository_metadata(('following', 'all', 'repository:'))

                for commit_hash in hashes or []:
                    for post_id in list(self._by_hash.get(normalize_hash(commit_hash), ())):
                        self._remove_post(post_id)

        if workdir:
            since = None
            if storage_base and repositories:
                starts = [self.storage.oldest_fetched_date(storage_base, parse_repository_id(r).repository)
                          for r in repositories]
                starts = [s for s in starts if s]
                since = min(starts) if starts else None
            self.initialize(workdir, storage_base, since)

        return Result.ok()

    def _repository_keys(self, repository_id: str) -> List[str]:
        if '#branch:' in repository_id:
            parsed = parse_repository_id(repository_id)
            return [repository_key(parsed.repository, parsed.branch)]
        prefix = f"{base_url(repository_id)}#branch:"
        return [k for k in self._by_repository if k.startswith(prefix)]

    def _drop_repository_metadata(self, scopes: Tuple[str, ...]) -> None:
        """Forget repository listings of the given scopes ("repository:" matches all of them)."""
        for key in list(self._repositories):
            scope = key[1]
            if scope in scopes or ('repository:' in scopes and scope.startswith('repository:')):
                del self._repositories[key]

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @result_boundary(errors.UNEXPECTED_ERROR, "Failed to get posts")
    def get_posts(
        self,
        workdir: str,
        scope: str = 'timeline',
        since: Any = None,
        until: Any = None,
        types: Optional[List[str]] = None,
        limit: Optional[int] = None,
        skip_cache: bool = False,
        storage_base: Optional[str] = None,
        sort_by: str = 'latest'
    ) -> Result[List[Post]]:
        """
        Posts of a scope, newest first unless sort_by says otherwise.

        Scopes: timeline, all, repository:my, repository:<url>,
        repository:<url>/list:<id>, list:<id>, post:<id>, byId:<a,b>,
        thread:<id>.
        """
        options = parse_scope(scope)
        if not self.enabled:
            return Result.ok([])

        if skip_cache or workdir not in self._initialized:
            self.initialize(workdir, storage_base)

        since_dt = as_datetime(since)
        until_dt = as_datetime(until)
        kind = options['kind']

        # Lists and the workspace URL come from git; resolve them before taking the lock
        list_def: Optional[SocialList] = None
        if kind == 'list':
            with self._lock:
                indexed = f"{workdir}:{options['list']}" in self._by_list
            if not indexed:
                list_def = self.get_cached_list(workdir, options['list'])
                if list_def is None:
                    list_def = next((c for c in self._lists_for(workdir) if c.id == options['list']), None)
        my_url = (get_my_url(self.git, workdir) or '') if kind == 'repository:my' else ''

        with self._lock:
            if kind == 'post':
                post = self.get_post_by_id(options['id'])
                return Result.ok([post] if post else [])

            if kind == 'all':
                return Result.ok(self._sorted(list(self._posts.values()), sort_by, limit))

            if kind == 'byId':
                found = [self.get_post_by_id(i) for i in options['ids']]
                candidates = list({p.id: p for p in found if p}.values())
            elif kind == 'thread':
                candidates = self._thread(options['id'])
                if sort_by == 'latest':
                    sort_by = 'oldest'
            elif kind == 'list':
                candidates = self._list_posts(workdir, options['list'], list_def)
                if options.get('repository'):
                    repo = base_url(options['repository'])
                    candidates = [p for p in candidates if base_url(p.repository) == repo]
            elif kind == 'repository':
                candidates = [
                    self._posts[i]
                    for key in self._repository_keys(options['repository'])
                    for i in self._by_repository.get(key, ())
                ]
            elif kind == 'repository:my':
                branch = self._configured_branches.get(workdir)
                candidates = [
                    p for p in self._posts.values()
                    if (not p.repository or base_url(p.repository) == my_url)
                    and (not branch or not p.branch or p.branch == branch)
                ]
            else:
                candidates = list(self._posts.values())

            filtered = [
                p for p in candidates
                if (not types or p.type in types)
                and (since_dt is None or p.timestamp >= since_dt)
                and (until_dt is None or p.timestamp <= until_dt)
            ]
            return Result.ok(self._sorted(filtered, sort_by, limit))

    def _list_posts(self, workdir: str, list_id: str, list_def: Optional[SocialList]) -> List[Post]:
        key = f"{workdir}:{list_id}"
        if key not in self._by_list:
            if list_def is None:
                return []
            repos = {base_url(r) for r in list_def.repositories}
            self._by_list[key] = {i for i, p in self._posts.items() if base_url(p.repository) in repos}
        return [self._posts[i] for i in self._by_list[key] if i in self._posts]

    def _thread(self, root_id: str) -> List[Post]:
        root = self.get_post_by_id(root_id)
        if not root:
            return []
        members = {root.id: root}
        changed = True
        while changed:
            changed = False
            for post in self._posts.values():
                if post.id in members:
                    continue
                if post.original_post_id in members or post.parent_comment_id in members:
                    members[post.id] = post
                    changed = True
        return list(members.values())

    @staticmethod
    def _sorted(posts: List[Post], sort_by: str, limit: Optional[int]) -> List[Post]:
        posts = sorted(posts, key=lambda p: p.timestamp, reverse=(sort_by != 'oldest'))
        if limit and limit > 0:
            posts = posts[:limit]
        return posts

    def is_post_in_list(self, post: Post, list_id: str, workdir: str) -> bool:
        lst = self.get_cached_list(workdir, list_id)
        if not lst:
            return False
        repo = base_url(post.repository)
        return any(base_url(r) == repo for r in lst.repositories)

    # -------------------------------------------------------------------------
    # Settings and stats
    # -------------------------------------------------------------------------

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            self.enabled = enabled
            if not enabled:
                self._clear_posts()
                self._lists.clear()
                self._lists_complete.clear()
                self._repositories.clear()
        logger.debug(f"Cache {'enabled' if enabled else 'disabled'}")

    def set_max_size(self, max_size: int) -> None:
        """Resize the post cache; oldest posts are evicted to fit."""
        with self._lock:
            self.max_size = self._clamp_size(max_size)
            self._evict()
        logger.debug(f"Cache resized to {self.max_size} entries")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'posts': {'size': len(self._posts), 'maxSize': self.max_size},
                'lists': sum(len(index) for index in self._lists.values()),
                'repositoryScopes': len(self._repositories),
                'cachedRanges': sorted(self._cached_start_dates),
                'enabled': self.enabled,
            }
