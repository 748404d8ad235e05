"""
Post materialization for gitsocial.

Commits become posts through a PostParser. The default parser understands
the GitMsg trailer that social clients append to commit messages:

    Nice writeup!

    --- GitMsg: ext="social"; type="comment"; original="#commit:abc..."; v="0.1.0"; ext-v="0.1.0" ---

Commits without a trailer are plain posts.
"""

import re
from abc import ABC, abstractmethod
from typing import Dict, Optional
import logging

from ..domain.post import POST_TYPES, Post, PostAuthor
from ..infra.git_client import GitCommit
from ..protocol import create_ref, resolve_ref

logger = logging.getLogger(__name__)

_HEADER_RE = re.compile(r'^--- GitMsg: (.*) ---$', re.MULTILINE)
_FIELD_RE = re.compile(r'([a-zA-Z_][a-zA-Z0-9_:-]*)="([^"]*)"')


def parse_gitmsg_header(line: str) -> Optional[Dict[str, str]]:
    """
    Fields of a GitMsg header line, or None when it is not one.

    ext, v and ext-v are required.
    """
    match = _HEADER_RE.match(line.strip())
    if not match:
        return None
    fields = dict(_FIELD_RE.findall(match.group(1)))
    if not fields.get('ext') or not fields.get('v') or not fields.get('ext-v'):
        return None
    return fields


class PostParser(ABC):
    """Turns a commit into a Post, or None when it is not social content."""

    @abstractmethod
    def parse(self, commit: GitCommit, repository_url: str, branch: Optional[str] = None) -> Optional[Post]:
        ...


class GitMsgPostParser(PostParser):

    def parse(self, commit: GitCommit, repository_url: str, branch: Optional[str] = None) -> Optional[Post]:
        if not commit.hash:
            return None

        message = commit.message or ''
        content = message.strip()
        fields: Dict[str, str] = {}

        header = _HEADER_RE.search(message)
        if header:
            parsed = parse_gitmsg_header(header.group(0))
            if parsed and parsed.get('ext') == 'social':
                fields = parsed
                content = message[:header.start()].strip()

        post_type = fields.get('type', 'post')
        if post_type not in POST_TYPES:
            logger.debug(f"Unknown post type '{post_type}' in {commit.hash[:12]}, treating as post")
            post_type = 'post'

        original = fields.get('original')
        reply_to = fields.get('reply-to')

        return Post(
            id=create_ref('commit', commit.hash, repository_url or None),
            repository=repository_url,
            branch=branch,
            author=PostAuthor(name=commit.author, email=commit.email),
            timestamp=commit.date,
            content=content,
            type=post_type,
            original_post_id=resolve_ref(original, repository_url) if original else None,
            parent_comment_id=resolve_ref(reply_to, repository_url) if reply_to else None,
            raw_message=message,
        )
