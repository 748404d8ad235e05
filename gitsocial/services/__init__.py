"""
Service layer for gitsocial.

Contains the social logic that orchestrates domain objects and infrastructure:
- StorageService: Isolated clones and the fetch cost gate
- ListService: Curated repository lists
- ContentCache: Posts, list index and repository metadata of a session
- RepositoryService: Repository scopes and bulk fetching
- FollowerService: Follow-back detection
- NotificationService: Derived notifications

Services share one GitClient, RefStore and ContentCache per session; the
GitSocial facade wires them together.
"""

from .storage_service import StorageService, FetchOutcome, StorageStats, ClearReport
from .post_source import PostParser, GitMsgPostParser
from .cache_service import ContentCache
from .list_service import ListService
from .repository_service import RepositoryService, RepositoryFilter
from .follower_service import FollowerService
from .notification_service import NotificationService

__all__ = [
    'StorageService',
    'FetchOutcome',
    'StorageStats',
    'ClearReport',
    'PostParser',
    'GitMsgPostParser',
    'ContentCache',
    'ListService',
    'RepositoryService',
    'RepositoryFilter',
    'FollowerService',
    'NotificationService',
]
