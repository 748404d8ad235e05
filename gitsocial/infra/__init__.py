"""
Infrastructure layer for gitsocial.

Contains abstractions for external systems:
- GitClient: Git command execution with timeouts and Result output
- RefStore: Append-only JSON records stored as commits under refs

These provide clean interfaces that can be mocked for testing.
"""

from .git_client import GitClient, GitOutput, GitCommit
from .ref_store import RefStore, EMPTY_TREE

__all__ = [
    'GitClient',
    'GitOutput',
    'GitCommit',
    'RefStore',
    'EMPTY_TREE',
]
