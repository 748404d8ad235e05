"""
Reference protocol for gitsocial.

Pure functions for addressing entities stored in git repositories:
- Repository URLs are normalized so equal repositories compare equal
- Entity refs have the form <url>#<type>:<value> where type is
  commit, branch or list; the url part is optional for local refs
- Clone directory names are derived deterministically from URLs

Nothing in this module performs I/O.
"""

import os
import re
from dataclasses import dataclass
from typing import Dict, Optional

# Ref namespace for social data inside every repository
SOCIAL_REF_PREFIX = "refs/gitmsg/social"
LIST_REF_PREFIX = f"{SOCIAL_REF_PREFIX}/lists/"
CONFIG_REF = f"{SOCIAL_REF_PREFIX}/config"

DEFAULT_BRANCH = "main"

REF_TYPES = ('commit', 'branch', 'list')

_LIST_NAME_RE = re.compile(r'^[a-zA-Z0-9_-]{1,40}$')
_HASH_RE = re.compile(r'^[a-fA-F0-9]+$')
_COMMIT_REF_RE = re.compile(r'^((https?://[^#\s]+|[^#\s]+)#commit:[a-f0-9]{12}|#commit:[a-f0-9]{12})$')
_BRANCH_REF_RE = re.compile(r'^((https?://[^#\s]+|[^#\s]+)#branch:[a-zA-Z0-9/_-]+|#branch:[a-zA-Z0-9/_-]+)$')
_LIST_REF_RE = re.compile(r'^((https?://[^#\s]+|[^#\s]+)#list:[a-zA-Z0-9_-]{1,40}|#list:[a-zA-Z0-9_-]{1,40})$')
_SCHEME_HOST_RE = re.compile(r'^(\w+://)([^/]+)(.*)$')


@dataclass(frozen=True)
class EntityRef:
    """Parsed form of <repository>#<type>:<value>."""
    type: str
    value: str
    repository: str = ""

    @property
    def is_local(self) -> bool:
        return not self.repository

    def to_string(self) -> str:
        return create_ref(self.type, self.value, self.repository or None)


@dataclass(frozen=True)
class RepositoryId:
    """Repository URL and branch from a url#branch:name identifier."""
    repository: str
    branch: str

    def to_string(self) -> str:
        return f"{self.repository}#branch:{self.branch}"


# =============================================================================
# URLS
# =============================================================================

def normalize_url(url: str) -> str:
    """
    Normalize a repository URL to its canonical form.

    - git@host:path becomes https://host/path
    - scheme and host are lowercased, path case is kept
    - trailing .git and trailing slashes are removed

    Never raises; input that is not a URL comes back trimmed.

    Examples:
        >>> normalize_url("git@GitHub.com:user/repo.git")
        'https://github.com/user/repo'
        >>> normalize_url("https://GitHub.com/User/Repo/")
        'https://github.com/User/Repo'
    """
    if not url or not isinstance(url, str):
        return url

    normalized = url.strip()

    if normalized.startswith('git@'):
        normalized = re.sub(r'^git@([^:]+):', r'https://\1/', normalized)

    normalized = normalized.rstrip('/')
    if normalized.endswith('.git'):
        normalized = normalized[:-4].rstrip('/')

    if '://' in normalized:
        match = _SCHEME_HOST_RE.match(normalized)
        if match:
            normalized = match.group(1).lower() + match.group(2).lower() + match.group(3)

    return normalized


def validate_url(url: str) -> bool:
    """Check that url is an SSH or HTTPS git URL with owner and repo segments."""
    if not url or not isinstance(url, str):
        return False

    trimmed = url.strip()
    if trimmed.startswith('git@'):
        return bool(re.match(r'^git@[^:]+:[^/]+/[^/]+', trimmed))

    match = re.match(r'^https?://([^/\s#]+)(/[^#\s]*)$', trimmed)
    if not match:
        return False
    segments = [s for s in match.group(2).split('/') if s]
    return len(segments) >= 2


def is_repository_location(url: str) -> bool:
    """A remote URL accepted by validate_url, or a local path or file:// URL git can fetch from."""
    if validate_url(url):
        return True
    trimmed = url.strip() if isinstance(url, str) else ''
    return trimmed.startswith('file://') or os.path.isabs(trimmed)


def url_to_git(url: str) -> str:
    """Append .git to a URL unless already present."""
    if not url:
        return url
    trimmed = url.strip()
    return trimmed if trimmed.endswith('.git') else trimmed + '.git'


def base_url(value: str) -> str:
    """Normalized URL with any #fragment removed."""
    if not value:
        return ''
    return normalize_url(value.split('#', 1)[0])


def parse_fragment(url: str) -> Dict[str, Optional[str]]:
    """
    Split url#fragment into its parts.

    Returns:
        Dict with base, fragment and branch (branch is the fragment with
        any "branch:" prefix removed)
    """
    if '#' not in url:
        return {'base': url, 'fragment': None, 'branch': None}

    base, fragment = url.split('#', 1)
    branch = fragment[len('branch:'):] if fragment.startswith('branch:') else fragment
    return {'base': base, 'fragment': fragment, 'branch': branch}


def is_my_repository(ref_repository: str, my_url: str, workdir: Optional[str] = None) -> bool:
    """True when a ref's repository is empty (local) or points at us."""
    if not ref_repository or ref_repository.startswith('#'):
        return True
    repo = base_url(ref_repository)
    if repo == normalize_url(my_url):
        return True
    return bool(workdir) and repo == normalize_url(workdir)


# =============================================================================
# REFS
# =============================================================================

def create_ref(ref_type: str, value: str, repository: Optional[str] = None) -> str:
    """
    Build a ref string.

    Commit values are lowercased and cut to 12 characters. Without a
    repository the ref is local: #type:value.
    """
    if ref_type == 'commit':
        value = value.lower()[:12]
    if repository:
        return f"{normalize_url(repository)}#{ref_type}:{value}"
    return f"#{ref_type}:{value}"


def parse_ref(ref: str) -> EntityRef:
    """
    Parse a ref string.

    A string without a known #type: selector yields type "unknown" with an
    empty repository and the input as value.
    """
    if not ref:
        return EntityRef(type='unknown', value=ref or '')

    for ref_type in REF_TYPES:
        marker = f"#{ref_type}:"
        if marker not in ref:
            continue

        repo_part, _, tail = ref.partition(marker)
        value = tail.strip().split('#', 1)[0]
        if ref_type == 'commit':
            value = value.lower()[:12]
        repository = normalize_url(repo_part) if repo_part and '#' not in repo_part else ''
        return EntityRef(type=ref_type, value=value, repository=repository)

    return EntityRef(type='unknown', value=ref)


def validate_ref(ref: str, ref_type: Optional[str] = None) -> bool:
    """Check a ref against the commit, branch or list pattern."""
    if not ref:
        return False
    patterns = {'commit': _COMMIT_REF_RE, 'branch': _BRANCH_REF_RE, 'list': _LIST_REF_RE}
    if ref_type:
        pattern = patterns.get(ref_type)
        return bool(pattern and pattern.match(ref))
    return any(p.match(ref) for p in patterns.values())


def normalize_ref(ref: str) -> str:
    """Normalize commit refs to 12-character hashes; other refs unchanged."""
    if not ref:
        return ref
    parsed = parse_ref(ref)
    if parsed.type == 'commit':
        return create_ref('commit', parsed.value, parsed.repository or None)
    return ref


def resolve_ref(ref: str, repository: Optional[str]) -> str:
    """Make a local commit ref absolute against the repository it came from."""
    if not ref:
        return ref
    parsed = parse_ref(ref)
    if parsed.type == 'commit' and not parsed.repository and repository:
        return create_ref('commit', parsed.value, repository)
    return normalize_ref(ref)


def parse_repository_id(identifier: str) -> RepositoryId:
    """
    Split url#branch:name into repository and branch.

    The branch defaults to "main" when the identifier has none. This is a
    documented default; callers that can detect the real default branch
    should do so before building identifiers.
    """
    if identifier and '#branch:' in identifier:
        repo, _, branch = identifier.partition('#branch:')
        if repo and branch:
            return RepositoryId(repository=normalize_url(repo), branch=branch)
    return RepositoryId(repository=base_url(identifier or ''), branch=DEFAULT_BRANCH)


def extract_branch_from_remote(remote_branch: str) -> str:
    """
    Strip the remote prefix from a remote-tracking branch name.

    remotes/origin/feature/x -> feature/x, origin/main -> main
    """
    if remote_branch.startswith('remotes/'):
        parts = remote_branch.split('/')
        return '/'.join(parts[2:]) if len(parts) >= 3 else remote_branch
    if '/' in remote_branch:
        slash = remote_branch.index('/')
        if slash > 0:
            return remote_branch[slash + 1:]
    return remote_branch


def validate_list_name(name: str) -> bool:
    """List ids are 1-40 characters of letters, digits, dash and underscore."""
    return bool(name) and isinstance(name, str) and bool(_LIST_NAME_RE.match(name))


def list_ref(list_id: str, extension: str = "social") -> str:
    return f"refs/gitmsg/{extension}/lists/{list_id}"


# =============================================================================
# HASHES
# =============================================================================

def normalize_hash(commit_hash: str) -> str:
    """
    Lowercase a commit hash and cut it to 12 characters.

    Raises:
        ValueError: If the value is not hexadecimal
    """
    if not commit_hash or not _HASH_RE.match(commit_hash):
        raise ValueError(f"Invalid commit hash format: {commit_hash}")
    return commit_hash.lower()[:12]


def validate_hash(commit_hash: str) -> bool:
    return bool(commit_hash) and bool(re.match(r'^[a-f0-9]{12}$', commit_hash))


# =============================================================================
# STORAGE NAMES
# =============================================================================

_HOST_PREFIXES = {
    'github-com-': 'https://github.com',
    'gitlab-com-': 'https://gitlab.com',
    'bitbucket-org-': 'https://bitbucket.org',
}


def storage_name(url: str) -> str:
    """
    Filesystem-safe directory name for a repository URL.

    Examples:
        >>> storage_name("https://github.com/user/repo#branch:main")
        'github-com-user-repo'
    """
    repo = (url or '').split('#', 1)[0]
    if not repo:
        return 'workspace'

    normalized = normalize_url(repo)
    without_scheme = re.sub(r'^(https?|git)://', '', normalized)
    without_scheme = re.sub(r'^git@', '', without_scheme)

    safe = re.sub(r'[:/.@\\]', '-', without_scheme)
    safe = re.sub(r'-+', '-', safe)
    return safe.strip('-')


def storage_name_to_url(name: str) -> str:
    """
    Best-effort reverse of storage_name for well-known hosts.

    The owner is taken as the first dash-separated segment, so owners
    containing dashes are not recovered; use the clone's remote URL when
    exactness matters.
    """
    if name in ('workspace', ''):
        return ''
    for prefix, host in _HOST_PREFIXES.items():
        if name.startswith(prefix):
            parts = name[len(prefix):].split('-')
            if len(parts) >= 2:
                return f"{host}/{parts[0]}/{'-'.join(parts[1:])}"
    return name


def is_workspace_storage_name(name: str) -> bool:
    return name in ('workspace', '')


def display_name(url: str) -> str:
    """
    Short human name for a repository: owner/repo for hosted repositories,
    the last two path parts for anything else.
    """
    if not url:
        return 'unknown'
    normalized = normalize_url(url.split('#', 1)[0])

    match = re.match(r'^\w+://[^/]+/(.+)$', normalized)
    path = match.group(1) if match else normalized
    parts = [p for p in path.split('/') if p]
    if len(parts) >= 2:
        name = f"{parts[-2]}/{parts[-1]}"
    elif parts:
        name = parts[-1]
    else:
        name = 'unknown'
    return re.sub(r'\.git$', '', name)
