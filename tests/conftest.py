"""
Shared fixtures: throwaway git repositories and a config pointing at tmp storage.
"""

import subprocess
from pathlib import Path

import pytest

from gitsocial.config import get_default_config


def git(cwd, *args):
    """Run git in cwd and return stripped stdout; fails the test on error."""
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=True)
    return result.stdout.strip()


def init_repo(path: Path, bare: bool = False) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q", *(["--bare"] if bare else []))
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    git(path, "config", "user.email", "test@example.com")
    git(path, "config", "user.name", "Test User")
    git(path, "config", "commit.gpgsign", "false")
    return path


def commit(path: Path, message: str) -> str:
    """Create an empty commit and return its hash."""
    git(path, "commit", "-q", "--allow-empty", "-m", message)
    return git(path, "rev-parse", "HEAD")


@pytest.fixture
def workspace(tmp_path):
    """A workspace repository on branch main with one commit."""
    repo = init_repo(tmp_path / "workspace")
    commit(repo, "Initial commit")
    return repo


@pytest.fixture
def make_repo(tmp_path):
    """Factory for extra working repositories under tmp_path/repos/<name>."""
    def factory(name: str) -> Path:
        repo = init_repo(tmp_path / "repos" / name)
        commit(repo, f"Initial commit of {name}")
        return repo
    return factory


@pytest.fixture
def storage_base(tmp_path):
    base = tmp_path / "storage"
    base.mkdir()
    return str(base)


@pytest.fixture
def config(storage_base):
    config = get_default_config()
    config['storage']['base'] = storage_base
    config['fetch']['max_workers'] = 2
    return config
