"""
List domain objects for gitsocial.

A SocialList is a named, versioned set of repository references owned by
one repository. Its persisted form is the JSON stored as the message of the
commit its ref points to; runtime flags are never written back.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

LIST_VERSION = "0.1.0"

# Keys that exist only at runtime and must never be persisted
RUNTIME_FIELDS = ('isUnpushed', 'isFollowedLocally', 'is_unpushed', 'is_followed_locally')


@dataclass(frozen=True)
class SocialList:
    """
    A curated list of repositories.

    Attributes:
        id: Stable identifier, also the ref name under refs/gitmsg/social/lists/
        name: Display name (defaults to id)
        repositories: Branch-qualified repository refs (url#branch:name)
        version: Format version of the stored record
        source: Ref of the remote list this one mirrors (url#list:id)
        is_unpushed: Runtime only, True when origin lacks this list
        is_followed_locally: Runtime only, True when a local list mirrors it
    """
    id: str
    name: str
    repositories: tuple = ()
    version: str = LIST_VERSION
    source: Optional[str] = None
    is_unpushed: Optional[bool] = None
    is_followed_locally: Optional[bool] = None

    @property
    def is_followed(self) -> bool:
        """True when this list mirrors another repository's list."""
        return bool(self.source)

    def with_flags(self, **flags: Any) -> 'SocialList':
        return replace(self, **flags)

    def to_storage_dict(self) -> Dict[str, Any]:
        """Persisted JSON form, runtime flags excluded."""
        result: Dict[str, Any] = {
            'version': self.version,
            'id': self.id,
            'name': self.name,
            'repositories': list(self.repositories),
        }
        if self.source:
            result['source'] = self.source
        return result

    def to_dict(self) -> Dict[str, Any]:
        result = self.to_storage_dict()
        if self.is_unpushed is not None:
            result['isUnpushed'] = self.is_unpushed
        if self.is_followed_locally is not None:
            result['isFollowedLocally'] = self.is_followed_locally
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], fallback_id: str = '') -> 'SocialList':
        """
        Build a list from its stored JSON.

        Missing id and name fall back to the ref name. Non-string entries in
        repositories are dropped.

        Raises:
            ValueError: If data is not a JSON object
        """
        if not isinstance(data, dict):
            raise ValueError(f"List record must be an object, got {type(data).__name__}")

        list_id = data.get('id') or fallback_id
        repositories = data.get('repositories') or []
        if not isinstance(repositories, list):
            repositories = []

        return cls(
            id=list_id,
            name=data.get('name') or list_id,
            repositories=tuple(r for r in repositories if isinstance(r, str)),
            version=data.get('version') or LIST_VERSION,
            source=data.get('source') or None,
        )


@dataclass(frozen=True)
class ListVersion:
    """One snapshot in a list's history, newest first when listed."""
    hash: str
    author: str
    email: str
    timestamp: datetime
    content: Any = None

    @property
    def repositories(self) -> List[str]:
        """Repository entries of this snapshot (empty when unparsable)."""
        if isinstance(self.content, dict):
            repos = self.content.get('repositories')
            if isinstance(repos, list):
                return [r for r in repos if isinstance(r, str)]
        return []

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hash': self.hash,
            'author': self.author,
            'email': self.email,
            'timestamp': self.timestamp.isoformat(),
            'content': self.content,
        }


@dataclass
class ListSyncReport:
    """Outcome of re-copying a followed list from its source."""
    list_id: str
    added: int = 0
    removed: int = 0
    added_repositories: List[str] = field(default_factory=list)
    removed_repositories: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'listId': self.list_id,
            'added': self.added,
            'removed': self.removed,
        }
