"""
gitsocial - A decentralized social protocol stored in plain git repositories.

Lists of followed repositories live under refs/gitmsg/social/lists/<id>,
posts are ordinary commits, and everything else (followers, notifications)
is derived by reading other people's repositories.

Quick Start:
    import gitsocial

    gs = gitsocial.GitSocial("/path/to/workspace")

    # Curate a list
    gs.create_list("reading", "Reading list")
    gs.add_repository("reading", "https://github.com/user/repo")

    # Fetch what the followed repositories published
    gs.fetch_updates(since="2025-01-01")

    # Read the timeline
    for post in gs.posts("timeline").data:
        print(post.repository, post.content)

    # Who follows back, and what concerns us
    gs.followers()
    gs.notifications()

Domain Objects:
    SocialList - Curated list of repositories
    Repository - Repository in the social graph
    Post - Commit materialized as social content
    Notification - Comment, repost, quote or follow concerning us

Services:
    ListService - List CRUD and list following
    StorageService - Isolated clones and the fetch cost gate
    ContentCache - Session cache of posts, lists and repositories
    RepositoryService - Repository scopes and bulk fetching
    FollowerService / NotificationService - Derived social state
"""

__version__ = "0.1.0"

# High-level API
from .api import GitSocial, create

# Domain objects
from .domain import (
    Result,
    ErrorInfo,
    SocialList,
    ListVersion,
    Repository,
    Follower,
    DateRange,
    Post,
    PostAuthor,
    Notification,
    OperationSummary,
)

# Services (for advanced use)
from .services import (
    StorageService,
    ListService,
    ContentCache,
    RepositoryService,
    FollowerService,
    NotificationService,
    PostParser,
    GitMsgPostParser,
)

# Errors
from .errors import GitSocialError

# Configuration
from .config import load_config, save_config

__all__ = [
    # Version
    "__version__",
    # High-level API
    "GitSocial",
    "create",
    # Domain objects
    "Result",
    "ErrorInfo",
    "SocialList",
    "ListVersion",
    "Repository",
    "Follower",
    "DateRange",
    "Post",
    "PostAuthor",
    "Notification",
    "OperationSummary",
    # Services
    "StorageService",
    "ListService",
    "ContentCache",
    "RepositoryService",
    "FollowerService",
    "NotificationService",
    "PostParser",
    "GitMsgPostParser",
    # Errors
    "GitSocialError",
    # Configuration
    "load_config",
    "save_config",
]
