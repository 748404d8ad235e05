"""
Post and notification domain objects for gitsocial.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

POST_TYPES = ('post', 'comment', 'repost', 'quote')
NOTIFICATION_TYPES = ('comment', 'repost', 'quote', 'follow')


@dataclass(frozen=True)
class PostAuthor:
    name: str
    email: str


@dataclass(frozen=True)
class Post:
    """
    A social post materialized from a commit.

    id is an absolute ref (url#commit:hash12) when the repository URL is
    known, otherwise a workspace-relative one (#commit:hash12).
    """
    id: str
    repository: str
    author: PostAuthor
    timestamp: datetime
    content: str
    type: str = 'post'
    branch: Optional[str] = None
    original_post_id: Optional[str] = None
    parent_comment_id: Optional[str] = None
    raw_message: str = ''

    @property
    def hash(self) -> str:
        return self.id.rsplit('#commit:', 1)[-1] if '#commit:' in self.id else ''

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'id': self.id,
            'repository': self.repository,
            'author': {'name': self.author.name, 'email': self.author.email},
            'timestamp': self.timestamp.isoformat(),
            'content': self.content,
            'type': self.type,
        }
        if self.branch:
            result['branch'] = self.branch
        if self.original_post_id:
            result['originalPostId'] = self.original_post_id
        if self.parent_comment_id:
            result['parentCommentId'] = self.parent_comment_id
        return result


@dataclass(frozen=True)
class NotificationCommit:
    author: str
    email: str
    timestamp: datetime


@dataclass(frozen=True)
class Notification:
    """Something another repository did that concerns ours."""
    type: str
    commit_id: str
    commit: Optional[NotificationCommit] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'type': self.type, 'commitId': self.commit_id}
        if self.commit:
            result['commit'] = {
                'author': self.commit.author,
                'email': self.commit.email,
                'timestamp': self.commit.timestamp.isoformat(),
            }
        return result
