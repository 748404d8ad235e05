"""
Workspace helpers for gitsocial.

Answers the questions every service asks about the local repository:
which URL identifies it, which branch carries social content, and what
its social configuration (refs/gitmsg/social/config) says.
"""

import json
from typing import Any, Dict, Optional
import logging

from .. import errors
from ..domain.result import Result
from ..infra.git_client import GitClient
from ..infra.ref_store import EMPTY_TREE
from ..protocol import CONFIG_REF, DEFAULT_BRANCH, extract_branch_from_remote, normalize_url

logger = logging.getLogger(__name__)

# Placeholder identity of a workspace without remotes
NO_REMOTE_URL = 'myrepository'
CONVENTION_BRANCH = 'gitsocial'


def get_origin_url(git: GitClient, workdir: str) -> str:
    """
    URL identifying the workspace.

    The origin remote wins, then any other remote, then "myrepository".
    """
    remotes = git.list_remotes(workdir)
    if not remotes:
        return NO_REMOTE_URL
    if 'origin' in remotes:
        return remotes['origin']
    return next(iter(remotes.values()))


def get_my_url(git: GitClient, workdir: str) -> Optional[str]:
    """Normalized workspace URL, or None when the workspace has no remote."""
    url = get_origin_url(git, workdir)
    if url == NO_REMOTE_URL:
        return None
    return normalize_url(url)


def get_social_config(git: GitClient, workdir: str) -> Optional[Dict[str, Any]]:
    """Parsed JSON of refs/gitmsg/social/config, or None."""
    commit = git.rev_parse(workdir, CONFIG_REF)
    if not commit:
        return None
    message = git.commit_message(workdir, commit)
    if not message:
        return None
    try:
        config = json.loads(message)
    except json.JSONDecodeError:
        logger.warning(f"Corrupt social config at {CONFIG_REF} in {workdir}")
        return None
    return config if isinstance(config, dict) else None


def set_social_config(git: GitClient, workdir: str, config: Dict[str, Any]) -> Result[str]:
    """Append a new version of the social config ref."""
    parent = git.rev_parse(workdir, CONFIG_REF)
    args = ['commit-tree', EMPTY_TREE, '-m', json.dumps(config, indent=2)]
    if parent:
        args += ['-p', parent]

    commit = git.execute(workdir, args)
    if not commit.success:
        return Result.fail(errors.WRITE_ERROR, "Failed to write social config", commit.error.message)

    commit_hash = commit.data.stdout.strip()
    update = git.execute(workdir, ['update-ref', CONFIG_REF, commit_hash])
    if not update.success:
        return Result.fail(errors.WRITE_ERROR, "Failed to update social config ref", update.error.message)

    logger.info(f"Updated social config in {workdir}: {config}")
    return Result.ok(commit_hash)


def get_configured_branch(git: GitClient, workdir: str) -> str:
    """
    Branch carrying the workspace's social content.

    Checked in order: the branch in the social config ref, a local
    "gitsocial" branch, origin's default branch, and finally "main".
    """
    config = get_social_config(git, workdir)
    if config and config.get('branch'):
        return config['branch']

    if git.rev_parse(workdir, f'refs/heads/{CONVENTION_BRANCH}'):
        return CONVENTION_BRANCH

    origin_head = git.symbolic_ref(workdir, 'refs/remotes/origin/HEAD')
    if origin_head:
        return extract_branch_from_remote(origin_head[len('refs/remotes/'):]
                                          if origin_head.startswith('refs/remotes/') else origin_head)

    logger.debug(f"No branch configured for {workdir}, using {DEFAULT_BRANCH}")
    return DEFAULT_BRANCH
