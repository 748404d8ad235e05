"""
Repository domain objects for gitsocial.

Repository is a runtime view of a git repository taking part in the social
graph: the workspace itself, or a remote one held as an isolated clone.
DateRange models the closed date intervals already fetched for a clone.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional


def utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC already."""
    return value.astimezone(timezone.utc).replace(tzinfo=None) if value.tzinfo else value


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_date_string(value: Any) -> str:
    """Render a date, datetime or ISO string as YYYY-MM-DD."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    return text[:10] if 'T' in text or len(text) > 10 else text


def current_week_monday(today: Optional[date] = None) -> date:
    """Monday of the week containing today."""
    today = today or utc_now().date()
    return today - timedelta(days=today.weekday())


def days_between(start: str, end: str) -> int:
    """Whole days from start to end (negative when end precedes start)."""
    return (date.fromisoformat(end) - date.fromisoformat(start)).days


@dataclass(frozen=True)
class DateRange:
    """Closed interval of dates, both ends as YYYY-MM-DD strings."""
    start: str
    end: str

    def to_dict(self) -> Dict[str, str]:
        return {'start': self.start, 'end': self.end}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DateRange':
        return cls(start=to_date_string(data['start']), end=to_date_string(data['end']))


def merge_ranges(ranges: Iterable[DateRange]) -> List[DateRange]:
    """
    Coalesce overlapping or adjacent ranges.

    Ranges whose gap is at most one day are merged, so
    [01-01..01-10] and [01-11..01-20] become [01-01..01-20].
    """
    ordered = sorted(ranges, key=lambda r: r.start)
    if len(ordered) <= 1:
        return ordered

    merged: List[DateRange] = []
    current = ordered[0]
    for nxt in ordered[1:]:
        if days_between(current.end, nxt.start) <= 1:
            current = DateRange(current.start, max(current.end, nxt.end))
        else:
            merged.append(current)
            current = nxt
    merged.append(current)
    return merged


def add_range(existing: Iterable[DateRange], new_range: DateRange) -> List[DateRange]:
    return merge_ranges(list(existing) + [new_range])


def is_range_covered(start: str, end: str, ranges: Iterable[DateRange]) -> bool:
    """
    True when [start, end] is covered by ranges with no gap.

    Walks the ranges in start order from the requested start; any range
    beginning after the current position is a gap.
    """
    ordered = sorted(ranges, key=lambda r: r.start)
    if not ordered:
        return False

    position = start
    for rng in ordered:
        if rng.start > position:
            return False
        if rng.end >= position:
            position = rng.end
        if position >= end:
            return True
    return False


def oldest_start(ranges: Iterable[DateRange]) -> Optional[str]:
    starts = [r.start for r in ranges]
    return min(starts) if starts else None


@dataclass(frozen=True)
class Repository:
    """
    A repository in the social graph.

    Attributes:
        id: url#branch:branch
        url: Normalized URL (or workspace path for the workspace)
        name: Display name (owner/repo for hosted repositories)
        branch: Branch holding social content
        type: "workspace" or "other"
        path: Local path of the workspace or its isolated clone
        fetched_ranges: Date ranges already fetched into the clone
        lists: Names of local lists containing this repository
    """
    id: str
    url: str
    name: str
    branch: str = "main"
    type: str = "other"
    social_enabled: bool = True
    path: Optional[str] = None
    last_fetch_time: Optional[datetime] = None
    fetched_ranges: tuple = ()
    lists: tuple = ()
    remote_name: Optional[str] = None

    @property
    def is_workspace(self) -> bool:
        return self.type == "workspace"

    def with_lists(self, lists: Iterable[str]) -> 'Repository':
        return replace(self, lists=tuple(lists))

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'id': self.id,
            'url': self.url,
            'name': self.name,
            'branch': self.branch,
            'type': self.type,
            'socialEnabled': self.social_enabled,
        }
        if self.path:
            result['path'] = self.path
        if self.last_fetch_time:
            result['lastFetchTime'] = self.last_fetch_time.isoformat()
        if self.fetched_ranges:
            result['fetchedRanges'] = [r.to_dict() for r in self.fetched_ranges]
        if self.lists:
            result['lists'] = list(self.lists)
        if self.remote_name:
            result['remoteName'] = self.remote_name
        return result


@dataclass(frozen=True)
class Follower(Repository):
    """A followed repository whose own lists include ours."""
    follows_via: str = ""

    @classmethod
    def from_repository(cls, repo: Repository, follows_via: str) -> 'Follower':
        return cls(
            id=repo.id,
            url=repo.url,
            name=repo.name,
            branch=repo.branch,
            type=repo.type,
            social_enabled=repo.social_enabled,
            path=repo.path,
            last_fetch_time=repo.last_fetch_time,
            fetched_ranges=repo.fetched_ranges,
            lists=repo.lists,
            remote_name=repo.remote_name,
            follows_via=follows_via,
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['followsVia'] = self.follows_via
        return result


@dataclass
class CloneState:
    """State recorded in an isolated clone's git config (gitsocial.*)."""
    version: Optional[str] = None
    last_fetch: Optional[str] = None
    fetched_ranges: List[DateRange] = field(default_factory=list)
    is_persistent: Optional[bool] = None
    created_at: Optional[str] = None
    branch: Optional[str] = None

    @property
    def last_fetch_time(self) -> Optional[datetime]:
        if not self.last_fetch:
            return None
        try:
            parsed = datetime.fromisoformat(self.last_fetch.replace('Z', '+00:00'))
        except ValueError:
            return None
        return utc_naive(parsed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'lastFetch': self.last_fetch,
            'fetchedRanges': [r.to_dict() for r in self.fetched_ranges],
            'isPersistent': self.is_persistent,
            'createdAt': self.created_at,
            'branch': self.branch,
        }
