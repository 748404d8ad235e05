"""
Repository storage service for gitsocial.

Turns remote repository URLs into isolated local clones:
- One bare clone per normalized URL under <storage_base>/repositories/
- Clones are partial (no blobs) and shallow by date
- Fetches are cost-gated: a date range already fetched is never fetched again
- Temporary clones are evicted by age; persistent ones are kept

Clone state lives in the clone's own git config (gitsocial.*), so fetching
resumes correctly after a restart.
"""

import json
import os
import shutil
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import logging

from .. import errors
from ..config import load_config
from ..domain.repository import (
    CloneState,
    DateRange,
    add_range,
    current_week_monday,
    is_range_covered,
    oldest_start,
    to_date_string,
)
from ..domain.result import ErrorInfo, Result
from ..errors import result_boundary
from ..infra.git_client import GitClient, GitCommit
from ..protocol import normalize_url, storage_name, url_to_git, validate_url

logger = logging.getLogger(__name__)

STATE_VERSION = '1.0.0'
UPSTREAM = 'upstream'
SOCIAL_REFSPEC = '+refs/gitmsg/social/*:refs/remotes/upstream/gitmsg/social/*'


@dataclass
class FetchOutcome:
    """What a fetch did: skipped by the cost gate, or the ranges now held."""
    skipped: bool = False
    since: Optional[str] = None
    fetched_ranges: List[DateRange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'skipped': self.skipped,
            'since': self.since,
            'fetchedRanges': [r.to_dict() for r in self.fetched_ranges],
        }


@dataclass
class StorageStats:
    total_repositories: int = 0
    disk_usage: int = 0
    persistent: int = 0
    temporary: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'totalRepositories': self.total_repositories,
            'diskUsage': self.disk_usage,
            'persistent': self.persistent,
            'temporary': self.temporary,
        }


@dataclass
class ClearReport:
    deleted_count: int = 0
    disk_space_freed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'deletedCount': self.deleted_count,
            'diskSpaceFreed': self.disk_space_freed,
            'errors': self.errors,
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_lock_error(error: Optional[ErrorInfo]) -> bool:
    message = error.message if error else ''
    return 'Unable to create' in message and '.lock' in message


def directory_size(path: str) -> int:
    """Total size in bytes of regular files below path."""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.path.getsize(os.path.join(root, name))
            except OSError:
                continue
    return total


class StorageService:
    """
    Manager for isolated repository clones.

    Concurrent ensure/fetch calls for the same repository share one
    in-flight operation. Anything that touches a clone directory holds that
    directory's lock, so work on one repository is serialized while
    different repositories proceed in parallel.

    Example:
        storage = StorageService()
        result = storage.ensure_repository(base, "https://github.com/u/r", "main")
        if result.success:
            storage.fetch_repository(base, "https://github.com/u/r", "main", since="2025-01-01")
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        git_client: Optional[GitClient] = None
    ):
        """
        Initialize StorageService.

        Args:
            config: Configuration dict (loads default if None)
            git_client: GitClient instance (creates new if None)
        """
        self.config = config or load_config()
        git_config = self.config.get('git', {})
        self.git = git_client or GitClient(
            timeout=git_config.get('command_timeout', 30),
            network_timeout=git_config.get('network_timeout', 120),
        )
        storage_config = self.config.get('storage', {})
        self.temporary_ttl = timedelta(hours=storage_config.get('temporary_ttl_hours', 24))
        self.depth_fallback = self.config.get('fetch', {}).get('depth_fallback', 100)

        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = threading.Lock()
        self._dir_locks: Dict[str, threading.Lock] = {}

    # -------------------------------------------------------------------------
    # Paths and state
    # -------------------------------------------------------------------------

    @staticmethod
    def repositories_dir(storage_base: str) -> Path:
        return Path(storage_base) / 'repositories'

    def get_storage_dir(self, storage_base: str, url: str) -> str:
        """Clone directory for a repository URL."""
        return str(self.repositories_dir(storage_base) / storage_name(url))

    def read_repository_config(self, path: str) -> Optional[CloneState]:
        """
        Read the gitsocial.* state of a clone.

        Returns None when the directory is missing or holds no state.
        """
        if not os.path.isdir(path):
            return None

        entries = self.git.get_config_regexp(path, r'^gitsocial\.')
        if not entries:
            return None

        state = CloneState()
        for key, value in entries.items():
            name = key[len('gitsocial.'):]
            if name == 'ispersistent':
                state.is_persistent = value.strip() == 'true'
            elif name == 'lastfetch':
                state.last_fetch = value.strip()
            elif name == 'fetchedranges':
                try:
                    state.fetched_ranges = [DateRange.from_dict(r) for r in json.loads(value)]
                except (ValueError, KeyError, TypeError):
                    logger.debug(f"Unparsable fetchedranges in {path}: {value}")
            elif name == 'createdat':
                state.created_at = value.strip()
            elif name == 'version':
                state.version = value.strip()
            elif name == 'branch':
                state.branch = value.strip()
        return state

    def _write_state(self, path: str, **fields: Any) -> None:
        keys = {
            'version': 'gitsocial.version',
            'last_fetch': 'gitsocial.lastfetch',
            'fetched_ranges': 'gitsocial.fetchedranges',
            'is_persistent': 'gitsocial.ispersistent',
            'created_at': 'gitsocial.createdat',
            'branch': 'gitsocial.branch',
        }
        for name, value in fields.items():
            if value is None:
                continue
            if name == 'fetched_ranges':
                value = json.dumps([r.to_dict() for r in value])
            elif name == 'is_persistent':
                value = 'true' if value else 'false'
            if not self.git.set_config(path, keys[name], str(value)):
                logger.warning(f"Failed to write {keys[name]} in {path}")

    def _remove_clone(self, path: str) -> bool:
        try:
            if os.path.exists(path):
                shutil.rmtree(path)
                logger.debug(f"Removed clone {path}")
            return True
        except OSError as e:
            logger.warning(f"Failed to remove clone {path}: {e}")
            return False

    def _dir_lock(self, storage_dir: str) -> threading.Lock:
        with self._inflight_lock:
            return self._dir_locks.setdefault(storage_dir, threading.Lock())

    def _shared(self, key: str, operation: Callable[[], Result]) -> Result:
        """Run operation once per key; concurrent callers get the same Result."""
        with self._inflight_lock:
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future

        if not owner:
            logger.debug(f"Waiting for in-flight operation {key}")
            return future.result()

        try:
            result = operation()
            future.set_result(result)
            return result
        except Exception as e:
            future.set_exception(e)
            raise
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)

    def _fetch_args(self, branch: str, *options: str) -> List[str]:
        return [
            'fetch', UPSTREAM,
            f'+refs/heads/{branch}:refs/remotes/upstream/{branch}',
            SOCIAL_REFSPEC,
            *options,
            '--no-tags',
        ]

    def _oldest_commit_date(self, path: str, branch: str) -> Optional[str]:
        result = self.git.execute(path, [
            'log', f'upstream/{branch}', '--reverse', '--max-count=1',
            '--format=%cd', '--date=short',
        ])
        if result.success and result.data.stdout.strip():
            return result.data.stdout.strip().splitlines()[0]
        return None

    # -------------------------------------------------------------------------
    # Ensure
    # -------------------------------------------------------------------------

    @result_boundary(errors.UNEXPECTED_ERROR, "Failed to ensure repository")
    def ensure_repository(
        self,
        storage_base: str,
        url: str,
        branch: str,
        is_persistent: bool = True,
        force: bool = False
    ) -> Result[str]:
        """
        Make sure an isolated clone of url exists.

        Idempotent: an existing clone with recorded state is reused as is.
        A persistent request upgrades a temporary clone to persistent.

        Args:
            storage_base: Root directory for clones
            url: Repository URL (any form; normalized here)
            branch: Branch holding social content
            is_persistent: Keep the clone out of age-based cleanup
            force: Delete and re-create the clone

        Returns:
            Result with the clone directory
        """
        if not storage_base or not isinstance(storage_base, str):
            return Result.fail(errors.INVALID_STORAGE_BASE, "Storage base directory must be a valid path")

        normalized = normalize_url(url)
        storage_dir = self.get_storage_dir(storage_base, normalized)

        def ensure() -> Result[str]:
            with self._dir_lock(storage_dir):
                return self._do_ensure(storage_base, normalized, branch, is_persistent, force)

        if force:
            return ensure()
        return self._shared(f"ensure:{normalized}:{branch}", ensure)

    def _do_ensure(
        self,
        storage_base: str,
        url: str,
        branch: str,
        is_persistent: bool,
        force: bool
    ) -> Result[str]:
        storage_dir = self.get_storage_dir(storage_base, url)
        self.repositories_dir(storage_base).mkdir(parents=True, exist_ok=True)

        if not force and os.path.isdir(storage_dir):
            state = self.read_repository_config(storage_dir)
            if state and state.last_fetch:
                if is_persistent and not state.is_persistent:
                    self._write_state(storage_dir, is_persistent=True)
                logger.debug(f"Using existing clone of {url} at {storage_dir}")
                return Result.ok(storage_dir)

        if os.path.exists(storage_dir):
            self._remove_clone(storage_dir)

        logger.info(f"Creating clone of {url}#branch:{branch} (persistent={is_persistent})")
        os.makedirs(storage_dir, exist_ok=True)

        init = self.git.execute(storage_dir, ['init', '--bare'])
        if not init.success:
            self._remove_clone(storage_dir)
            return Result.fail(errors.INIT_ERROR, "Failed to initialize repository", init.error.message)

        # Hosted remotes get the .git form; local paths are used as given
        remote_url = url_to_git(url) if validate_url(url) else url
        remote = self.git.execute(storage_dir, ['remote', 'add', UPSTREAM, remote_url])
        if not remote.success:
            self._remove_clone(storage_dir)
            return Result.fail(errors.REMOTE_ERROR, "Failed to add remote", remote.error.message)

        for key, value in (('remote.upstream.partialclonefilter', 'blob:none'),
                           ('remote.upstream.pushurl', '')):
            if not self.git.set_config(storage_dir, key, value):
                logger.warning(f"Failed to set {key} in {storage_dir}")

        now = _utc_now()
        since = current_week_monday().isoformat()
        today = now.date().isoformat()

        fetch = self.git.execute(storage_dir, self._fetch_args(branch, '--shallow-since', since), network=True)
        used_depth = False
        if not fetch.success:
            failure = self._classify_fetch_failure(storage_dir, url, fetch.error)
            if failure:
                return failure

            logger.debug(f"Shallow-since fetch refused by {url}, retrying with --depth")
            fetch = self.git.execute(
                storage_dir,
                self._fetch_args(branch, '--depth', str(self.depth_fallback), '--update-shallow'),
                network=True,
            )
            used_depth = True
            if not fetch.success:
                failure = self._classify_fetch_failure(storage_dir, url, fetch.error)
                if failure:
                    return failure
                logger.error(f"Failed to fetch {url}#branch:{branch}: {fetch.error.message}")
                self._remove_clone(storage_dir)
                return Result.fail(errors.FETCH_ERROR,
                                   f"Failed to fetch branch '{branch}' from {url}",
                                   fetch.error.message)

        start = since
        if used_depth:
            start = self._oldest_commit_date(storage_dir, branch) or since

        self._write_state(
            storage_dir,
            version=STATE_VERSION,
            last_fetch=now.isoformat(),
            fetched_ranges=[DateRange(start, today)],
            is_persistent=is_persistent,
            created_at=now.isoformat(),
            branch=branch,
        )
        logger.info(f"Cloned {url} into {storage_dir}")
        return Result.ok(storage_dir)

    def _classify_fetch_failure(self, storage_dir: str, url: str, error: ErrorInfo) -> Optional[Result]:
        """
        Failures that end the attempt immediately.

        Lock-file errors mean the clone is corrupt: it is deleted so the next
        ensure re-creates it. Timeouts are not retried with other strategies.
        """
        if _is_lock_error(error):
            logger.warning(f"Lock file error in {storage_dir}, removing clone of {url}")
            self._remove_clone(storage_dir)
            return Result.fail(errors.LOCK_FILE_ERROR,
                               "Repository has a stale lock file; removed, will re-clone on next access",
                               error.message)
        if error.code == errors.TIMEOUT:
            return Result.fail(errors.TIMEOUT, f"Fetching {url} timed out", error.message)
        return None

    # -------------------------------------------------------------------------
    # Fetch
    # -------------------------------------------------------------------------

    @result_boundary(errors.FETCH_ERROR, "Failed to fetch repository")
    def fetch_repository(
        self,
        storage_base: str,
        url: str,
        branch: Optional[str] = None,
        since: Any = None
    ) -> Result[FetchOutcome]:
        """
        Fetch new data into a clone, skipping ranges already fetched.

        With since, the fetch is skipped (no network call, lastfetch kept)
        when [since, newest fetched date] is covered without gaps. Without
        since, the fetch starts at the oldest fetched date, or this week's
        Monday for a clone with no ranges.

        Args:
            storage_base: Root directory for clones
            url: Repository URL
            branch: Branch to fetch (read from the clone's state when omitted)
            since: Date, datetime or ISO string

        Returns:
            Result with a FetchOutcome
        """
        if not storage_base or not isinstance(storage_base, str):
            return Result.fail(errors.INVALID_STORAGE_BASE, "Storage base directory must be a valid path")

        normalized = normalize_url(url)
        storage_dir = self.get_storage_dir(storage_base, normalized)
        if not os.path.isdir(storage_dir):
            return Result.fail(errors.REPOSITORY_NOT_FOUND, f"Repository not found in storage: {normalized}")

        target_branch = branch
        if not target_branch:
            state = self.read_repository_config(storage_dir)
            if not state or not state.branch:
                return Result.fail(errors.MISSING_BRANCH, f"Branch is required for repository: {url}")
            target_branch = state.branch

        since_str = to_date_string(since) if since else None
        key = f"fetch:{normalized}:{target_branch}:{since_str or 'latest'}"

        def fetch() -> Result[FetchOutcome]:
            with self._dir_lock(storage_dir):
                return self._do_fetch(storage_dir, normalized, target_branch, since_str)

        return self._shared(key, fetch)

    def _do_fetch(self, storage_dir: str, url: str, branch: str, since: Optional[str]) -> Result[FetchOutcome]:
        # Re-read under the directory lock: a fetch that waited may find its range already added
        if not os.path.isdir(storage_dir):
            return Result.fail(errors.REPOSITORY_NOT_FOUND, f"Repository not found in storage: {url}")
        state = self.read_repository_config(storage_dir) or CloneState()
        existing = state.fetched_ranges
        today = _utc_now().date().isoformat()

        if since:
            newest = max((r.end for r in existing), default=None)
            if newest and since <= newest and is_range_covered(since, newest, existing):
                logger.info(f"Skipping fetch of {url}: {since}..{newest} already fetched")
                return Result.ok(FetchOutcome(skipped=True, since=since, fetched_ranges=list(existing)))
            since_date = since
        elif existing:
            since_date = oldest_start(existing)
        else:
            since_date = current_week_monday().isoformat()

        logger.info(f"Fetching {url}#branch:{branch} since {since_date}")
        fetch = self.git.execute(
            storage_dir,
            self._fetch_args(branch, '--shallow-since', since_date, '--update-shallow'),
            network=True,
        )

        used_depth = False
        if not fetch.success:
            failure = self._classify_fetch_failure(storage_dir, url, fetch.error)
            if failure:
                return failure

            logger.debug(f"Shallow-since fetch refused by {url}, retrying with --depth")
            fetch = self.git.execute(
                storage_dir,
                self._fetch_args(branch, '--depth', str(self.depth_fallback), '--update-shallow'),
                network=True,
            )
            used_depth = True

            if not fetch.success:
                failure = self._classify_fetch_failure(storage_dir, url, fetch.error)
                if failure:
                    return failure

                logger.debug(f"Depth fetch refused by {url}, retrying with --unshallow")
                fetch = self.git.execute(storage_dir, self._fetch_args(branch, '--unshallow'), network=True)
                if not fetch.success:
                    failure = self._classify_fetch_failure(storage_dir, url, fetch.error)
                    if failure:
                        return failure
                    logger.error(f"Fetch of {url} failed after all fallbacks: {fetch.error.message}")
                    return Result.fail(errors.FETCH_ERROR,
                                       "Failed to fetch repository after all fallback attempts",
                                       fetch.error.message)

        start = since_date
        if used_depth:
            start = self._oldest_commit_date(storage_dir, branch) or since_date

        updated = add_range(existing, DateRange(start, today))
        self._write_state(storage_dir, last_fetch=_utc_now().isoformat(), fetched_ranges=updated)
        logger.debug(f"Fetched ranges for {url}: {[r.to_dict() for r in updated]}")
        return Result.ok(FetchOutcome(skipped=False, since=start, fetched_ranges=updated))

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    @result_boundary(errors.UNEXPECTED_ERROR, "Failed to get commits from repository")
    def get_commits(
        self,
        storage_base: str,
        url: str,
        branch: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 10000
    ) -> Result[List[GitCommit]]:
        """Commits of upstream/<branch> in a clone, newest first."""
        normalized = normalize_url(url)
        storage_dir = self.get_storage_dir(storage_base, normalized)
        if not os.path.isdir(storage_dir):
            return Result.fail(errors.REPOSITORY_NOT_FOUND, f"Repository not found in storage: {normalized}")
        if not branch:
            return Result.fail(errors.MISSING_BRANCH, f"Branch is required for repository: {url}")

        commits = self.git.log(storage_dir, f'upstream/{branch}', since=since, until=until, limit=limit)
        logger.debug(f"Read {len(commits)} commits from {normalized}#branch:{branch}")
        return Result.ok(commits)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    @result_boundary(errors.UNEXPECTED_ERROR, "Failed to clean up repositories")
    def cleanup(self, storage_base: str) -> Result[int]:
        """
        Remove expired temporary clones.

        Clones without recorded state are invalid and removed. Persistent
        clones are kept until explicitly removed. A failure on one clone is
        logged and the pass continues.

        Returns:
            Result with the number of clones removed
        """
        repos_dir = self.repositories_dir(storage_base)
        if not repos_dir.is_dir():
            return Result.ok(0)

        removed = 0
        now = _utc_now().replace(tzinfo=None)
        for entry in sorted(repos_dir.iterdir()):
            try:
                with self._dir_lock(str(entry)):
                    state = self.read_repository_config(str(entry))
                    last_fetch = state.last_fetch_time if state else None

                    if last_fetch is None:
                        logger.debug(f"Removing clone without state: {entry}")
                        if self._remove_clone(str(entry)):
                            removed += 1
                        continue

                    if state.is_persistent:
                        continue

                    age = now - last_fetch
                    if age > self.temporary_ttl:
                        logger.debug(f"Removing expired clone {entry} (age {int(age.total_seconds() // 3600)}h)")
                        if self._remove_clone(str(entry)):
                            removed += 1
            except Exception as e:
                logger.warning(f"Error checking clone {entry}: {e}")

        logger.info(f"Cleanup removed {removed} clones")
        return Result.ok(removed)

    @result_boundary(errors.UNEXPECTED_ERROR, "Failed to get storage stats")
    def get_stats(self, storage_base: str) -> Result[StorageStats]:
        stats = StorageStats()
        repos_dir = self.repositories_dir(storage_base)
        if not repos_dir.is_dir():
            return Result.ok(stats)

        for entry in sorted(repos_dir.iterdir()):
            state = self.read_repository_config(str(entry))
            if not state:
                continue
            stats.total_repositories += 1
            if state.is_persistent:
                stats.persistent += 1
            else:
                stats.temporary += 1
            stats.disk_usage += directory_size(str(entry))
        return Result.ok(stats)

    @result_boundary(errors.UNEXPECTED_ERROR, "Failed to clear repository cache")
    def clear_cache(self, storage_base: str) -> Result[ClearReport]:
        """Delete every clone regardless of age or persistence."""
        report = ClearReport()
        repos_dir = self.repositories_dir(storage_base)
        if not repos_dir.is_dir():
            return Result.ok(report)

        for entry in sorted(repos_dir.iterdir()):
            size = directory_size(str(entry))
            try:
                with self._dir_lock(str(entry)):
                    shutil.rmtree(entry)
            except OSError as e:
                report.errors.append(f"Failed to delete {entry.name}: {e}")
                logger.warning(f"Error deleting clone {entry}: {e}")
                continue
            report.deleted_count += 1
            report.disk_space_freed += size

        logger.info(f"Cleared {report.deleted_count} clones, freed {report.disk_space_freed / 1024 / 1024:.1f} MB")
        return Result.ok(report)

    def oldest_fetched_date(self, storage_base: str, url: str) -> Optional[date]:
        """Start of the oldest fetched range of a clone, if any."""
        state = self.read_repository_config(self.get_storage_dir(storage_base, url))
        start = oldest_start(state.fetched_ranges) if state else None
        return date.fromisoformat(start) if start else None
