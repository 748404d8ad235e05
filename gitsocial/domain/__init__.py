"""
Domain layer for gitsocial.

Contains pure domain objects with no I/O or side effects:
- Result / ErrorInfo: the success/failure shape every operation returns
- SocialList / ListVersion: curated repository lists and their history
- Repository / Follower / DateRange: repositories in the social graph
- Post / Notification: materialized content and derived events
- OperationSummary: per-repository outcome of bulk operations

These objects are immutable where possible and provide
serialization methods for JSON output.
"""

from .result import Result, ErrorInfo
from .social_list import SocialList, ListVersion, ListSyncReport, LIST_VERSION
from .repository import (
    Repository,
    Follower,
    DateRange,
    CloneState,
    merge_ranges,
    add_range,
    is_range_covered,
    oldest_start,
    current_week_monday,
    to_date_string,
)
from .post import Post, PostAuthor, Notification, NotificationCommit
from .operation import OperationStatus, OperationDetail, OperationSummary

__all__ = [
    'Result',
    'ErrorInfo',
    'SocialList',
    'ListVersion',
    'ListSyncReport',
    'LIST_VERSION',
    'Repository',
    'Follower',
    'DateRange',
    'CloneState',
    'merge_ranges',
    'add_range',
    'is_range_covered',
    'oldest_start',
    'current_week_monday',
    'to_date_string',
    'Post',
    'PostAuthor',
    'Notification',
    'NotificationCommit',
    'OperationStatus',
    'OperationDetail',
    'OperationSummary',
]
