"""
Git client infrastructure for gitsocial.

Provides a clean abstraction over git command execution.
All git operations go through this client, making them:
- Easy to mock for testing
- Consistent in error handling (a Result, never an exception)
- Bounded in time (every call carries a timeout)
"""

import os
import subprocess
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence
import logging

from .. import errors
from ..domain.repository import utc_naive, utc_now
from ..domain.result import Result

logger = logging.getLogger(__name__)

# Separators for machine-readable git log output
RECORD_SEP = '\x1e'
FIELD_SEP = '\x1f'


@dataclass(frozen=True)
class GitOutput:
    """Captured output of a successful git command."""
    stdout: str
    stderr: str = ""


@dataclass(frozen=True)
class GitCommit:
    """A git commit with metadata."""
    hash: str
    date: datetime
    author: str
    email: str
    message: str


def _parse_date(value: str) -> datetime:
    """Committer date as naive UTC, so commits from different zones compare correctly."""
    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except (ValueError, AttributeError):
        return utc_now()
    return utc_naive(parsed)


class GitClient:
    """
    Abstraction over git commands.

    Local commands use `timeout`; commands that talk to a remote use
    `network_timeout`. A timed out command is an ordinary failure with
    code TIMEOUT so callers can skip that repository and continue.

    Example:
        client = GitClient()
        result = client.execute("/path/to/repo", ["rev-parse", "HEAD"])
        if result.success:
            print(result.data.stdout)
    """

    def __init__(self, timeout: int = 30, network_timeout: int = 120):
        """
        Initialize GitClient.

        Args:
            timeout: Local command timeout in seconds (default: 30)
            network_timeout: Remote command timeout in seconds (default: 120)
        """
        self.timeout = timeout
        self.network_timeout = network_timeout

    def execute(
        self,
        path: str,
        args: Sequence[str],
        network: bool = False
    ) -> Result[GitOutput]:
        """
        Run git with args in path.

        Args:
            path: Working directory
            args: Arguments after "git"
            network: Use the network timeout

        Returns:
            Result with GitOutput on success; on failure the error message
            is git's stderr so callers can inspect it
        """
        cmd = ['git', *args]
        timeout = self.network_timeout if network else self.timeout
        env = dict(os.environ, GIT_TERMINAL_PROMPT='0')

        try:
            proc = subprocess.run(
                cmd,
                cwd=path,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Git command timed out after {timeout}s: git {' '.join(args[:2])} in {path}")
            return Result.fail(errors.TIMEOUT, f"git {args[0]} timed out after {timeout}s",
                               {'args': list(args), 'path': path})
        except OSError as e:
            logger.error(f"Git command failed: git {' '.join(args[:2])} in {path} - {e}")
            return Result.fail(errors.GIT_ERROR, str(e), {'args': list(args), 'path': path})

        if proc.returncode != 0:
            stderr = (proc.stderr or '').strip()
            logger.debug(f"git {' '.join(args[:2])} exited {proc.returncode}: {stderr}")
            return Result.fail(
                errors.GIT_ERROR,
                stderr or f"git {args[0]} exited with code {proc.returncode}",
                {'args': list(args), 'returncode': proc.returncode, 'stderr': stderr},
            )

        return Result.ok(GitOutput(stdout=proc.stdout or '', stderr=proc.stderr or ''))

    def _stdout(self, path: str, args: Sequence[str], network: bool = False) -> Optional[str]:
        """Stripped stdout, or None when the command failed."""
        result = self.execute(path, args, network=network)
        if not result.success:
            return None
        return result.data.stdout.strip()

    # -------------------------------------------------------------------------
    # Remotes
    # -------------------------------------------------------------------------

    def remote_url(self, path: str, remote: str = "origin") -> Optional[str]:
        """
        Get remote URL.

        Returns:
            Remote URL or None if not found
        """
        output = self._stdout(path, ['config', '--get', f'remote.{remote}.url'])
        return output or None

    def list_remotes(self, path: str) -> Dict[str, str]:
        """Map of remote name to fetch URL."""
        output = self._stdout(path, ['config', '--get-regexp', r'^remote\..*\.url$'])
        remotes: Dict[str, str] = {}
        if not output:
            return remotes
        for line in output.splitlines():
            key, _, url = line.partition(' ')
            if key.startswith('remote.') and key.endswith('.url') and url:
                remotes[key[len('remote.'):-len('.url')]] = url.strip()
        return remotes

    def get_default_branch(self, url: str, path: Optional[str] = None) -> Result[str]:
        """
        Ask a remote for its default branch.

        Runs `git ls-remote --symref <url> HEAD`, which prints
        "ref: refs/heads/<branch>\\tHEAD" for the symbolic HEAD.
        """
        result = self.execute(path or os.getcwd(), ['ls-remote', '--symref', url, 'HEAD'], network=True)
        if not result.success:
            return Result.from_error(result.error)

        for line in result.data.stdout.splitlines():
            if line.startswith('ref: refs/heads/'):
                branch = line[len('ref: refs/heads/'):].split('\t', 1)[0].strip()
                if branch:
                    return Result.ok(branch)

        return Result.fail(errors.BRANCH_DETECTION_FAILED, f"Remote {url} did not report a default branch")

    def ls_remote(self, path: str, remote: str, pattern: str) -> Result[List[str]]:
        """Ref names on a remote matching pattern."""
        result = self.execute(path, ['ls-remote', remote, pattern], network=True)
        if not result.success:
            return Result.from_error(result.error)
        refs = []
        for line in result.data.stdout.splitlines():
            parts = line.split('\t', 1)
            if len(parts) == 2 and parts[1].strip():
                refs.append(parts[1].strip())
        return Result.ok(refs)

    # -------------------------------------------------------------------------
    # Refs and objects
    # -------------------------------------------------------------------------

    def rev_parse(self, path: str, ref: str) -> Optional[str]:
        """Commit hash a ref points to, or None when it does not exist."""
        output = self._stdout(path, ['rev-parse', '--verify', '--quiet', f'{ref}^{{commit}}'])
        return output or None

    def commit_message(self, path: str, ref: str) -> Optional[str]:
        """Full message of the commit a ref points to."""
        result = self.execute(path, ['show', '-s', '--format=%B', ref])
        if not result.success:
            return None
        return result.data.stdout

    def for_each_ref(self, path: str, prefix: str) -> List[str]:
        """Full ref names under prefix."""
        output = self._stdout(path, ['for-each-ref', '--format=%(refname)', prefix])
        if not output:
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    def symbolic_ref(self, path: str, ref: str) -> Optional[str]:
        output = self._stdout(path, ['symbolic-ref', '--quiet', ref])
        return output or None

    # -------------------------------------------------------------------------
    # Config
    # -------------------------------------------------------------------------

    def get_config(self, path: str, key: str) -> Optional[str]:
        output = self._stdout(path, ['config', '--get', key])
        return output if output else None

    def get_config_regexp(self, path: str, pattern: str) -> Dict[str, str]:
        """Config entries whose key matches pattern, keyed by full name."""
        output = self._stdout(path, ['config', '--get-regexp', pattern])
        entries: Dict[str, str] = {}
        if not output:
            return entries
        for line in output.splitlines():
            key, _, value = line.partition(' ')
            if key:
                entries[key] = value
        return entries

    def set_config(self, path: str, key: str, value: str) -> bool:
        return self.execute(path, ['config', key, value]).success

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def log(
        self,
        path: str,
        ref: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 10000
    ) -> List[GitCommit]:
        """
        Get commit log of ref, newest first, merges excluded.

        Args:
            path: Path to git repository
            ref: Branch or ref to walk
            since: Only commits after this time
            until: Only commits before this time
            limit: Maximum commits to return

        Returns:
            List of GitCommit objects (empty when the ref is missing)
        """
        args = [
            'log', ref,
            f'--format=%H{FIELD_SEP}%cd{FIELD_SEP}%an{FIELD_SEP}%ae{FIELD_SEP}%B{RECORD_SEP}',
            '--date=iso-strict',
            '--no-merges',
            f'--max-count={limit}',
        ]
        if since:
            args.append(f'--since={since.isoformat()}')
        if until:
            args.append(f'--until={until.isoformat()}')

        result = self.execute(path, args)
        if not result.success:
            return []

        commits = []
        for record in result.data.stdout.split(RECORD_SEP):
            record = record.strip('\n')
            if not record.strip():
                continue
            parts = record.split(FIELD_SEP, 4)
            if len(parts) < 5:
                continue
            commits.append(GitCommit(
                hash=parts[0].strip(),
                date=_parse_date(parts[1]),
                author=parts[2].strip(),
                email=parts[3].strip(),
                message=parts[4].strip(),
            ))
        return commits
