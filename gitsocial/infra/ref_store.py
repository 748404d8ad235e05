"""
Ref store infrastructure for gitsocial.

Stores JSON records as an append-only log inside a git repository:
- Each key lives at refs/gitmsg/<extension>/lists/<key>
- Each write is a commit on the empty tree whose message is the JSON,
  parented on the previous write
- The current value is the newest commit; history is the commit chain

Writes to one repository are serialized with a per-repository lock.
"""

import json
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from .. import errors
from ..domain.result import Result
from ..domain.social_list import ListVersion
from .git_client import GitClient

logger = logging.getLogger(__name__)

EMPTY_TREE = '4b825dc642cb6eb9a060e54bf8d69288fbee4904'
HISTORY_END = '---GITMSG-END---'


class RefStore:
    """
    Append-only JSON log keyed by name under a ref namespace.

    Example:
        store = RefStore(GitClient())
        store.write("/path/to/repo", "reading", {"id": "reading", ...})
        result = store.read("/path/to/repo", "reading")
    """

    def __init__(self, git_client: Optional[GitClient] = None, extension: str = "social"):
        self.git = git_client or GitClient()
        self.extension = extension
        self.prefix = f"refs/gitmsg/{extension}/lists/"
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def ref_for(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def lock_for(self, workdir: str) -> threading.Lock:
        """The write lock for one repository."""
        with self._locks_guard:
            lock = self._locks.get(workdir)
            if lock is None:
                lock = self._locks[workdir] = threading.Lock()
            return lock

    def read(self, workdir: str, key: str) -> Result[Any]:
        """
        Read the current value of key.

        Missing refs and unparsable JSON both read as None; the latter is
        logged since it means the stored record is corrupt.
        """
        ref = self.ref_for(key)
        commit = self.git.rev_parse(workdir, ref)
        if not commit:
            return Result.ok(None)

        message = self.git.commit_message(workdir, commit)
        if message is None:
            return Result.ok(None)

        try:
            return Result.ok(json.loads(message))
        except json.JSONDecodeError as e:
            logger.warning(f"Corrupt JSON at {ref} in {workdir}: {e}")
            return Result.ok(None)

    def write(self, workdir: str, key: str, data: Dict[str, Any]) -> Result[str]:
        """
        Append a new version of key.

        Returns:
            Result with the new commit hash
        """
        ref = self.ref_for(key)
        content = json.dumps(data, indent=2)

        with self.lock_for(workdir):
            parent = self.git.rev_parse(workdir, ref)
            args = ['commit-tree', EMPTY_TREE, '-m', content]
            if parent:
                args += ['-p', parent]

            commit_result = self.git.execute(workdir, args)
            if not commit_result.success:
                logger.error(f"Failed to create commit for {ref}: {commit_result.error.message}")
                return Result.fail(errors.WRITE_ERROR,
                                   f"Failed to create list commit: {commit_result.error.message}",
                                   commit_result.error.details)

            commit_hash = commit_result.data.stdout.strip()
            update_args = ['update-ref', ref, commit_hash]
            if parent:
                update_args.append(parent)

            ref_result = self.git.execute(workdir, update_args)
            if not ref_result.success:
                logger.error(f"Failed to update {ref} to {commit_hash}: {ref_result.error.message}")
                return Result.fail(errors.WRITE_ERROR,
                                   f"Failed to update list reference: {ref_result.error.message}",
                                   ref_result.error.details)

        logger.info(f"Wrote {ref} -> {commit_hash[:12]}")
        return Result.ok(commit_hash)

    def delete(self, workdir: str, key: str) -> Result[None]:
        ref = self.ref_for(key)
        with self.lock_for(workdir):
            result = self.git.execute(workdir, ['update-ref', '-d', ref])
        if not result.success:
            return Result.fail(errors.DELETE_ERROR, f"Failed to delete {key}", result.error.message)
        logger.info(f"Deleted {ref}")
        return Result.ok()

    def enumerate(self, workdir: str) -> List[str]:
        """Keys present in workdir, in ref order."""
        return [
            ref[len(self.prefix):]
            for ref in self.git.for_each_ref(workdir, self.prefix)
            if ref.startswith(self.prefix) and len(ref) > len(self.prefix)
        ]

    def history(
        self,
        workdir: str,
        key: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        ref: Optional[str] = None
    ) -> Result[List[ListVersion]]:
        """
        Versions of key, newest first.

        Content is the parsed JSON of each version, or the raw message when
        it does not parse.

        Args:
            ref: Read this ref instead of the local one (e.g. a remote-tracking ref)
        """
        target = ref or self.ref_for(key)
        args = ['log', f'--format=%H%n%an%n%ae%n%at%n%B%n{HISTORY_END}', target]
        if since:
            args.append(f'--since={since.isoformat()}')
        if until:
            args.append(f'--until={until.isoformat()}')

        result = self.git.execute(workdir, args)
        if not result.success:
            return Result.fail(errors.GIT_ERROR, f"Failed to get history of {key}", result.error.message)

        versions = []
        for entry in result.data.stdout.split(HISTORY_END):
            lines = entry.strip().split('\n')
            if len(lines) < 5:
                continue

            content_text = '\n'.join(lines[4:]).strip()
            try:
                content: Any = json.loads(content_text)
            except json.JSONDecodeError:
                content = content_text

            try:
                timestamp = datetime.fromtimestamp(int(lines[3]), timezone.utc).replace(tzinfo=None)
            except ValueError:
                timestamp = datetime(1970, 1, 1)

            versions.append(ListVersion(
                hash=lines[0].strip(),
                author=lines[1],
                email=lines[2],
                timestamp=timestamp,
                content=content,
            ))

        return Result.ok(versions)
