"""
Operation result domain objects for gitsocial.

Bulk operations across many repositories (fetching updates, scanning
followers) never fail as a whole because one repository failed. Each
repository gets an OperationDetail; the OperationSummary aggregates them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional


class OperationStatus(Enum):
    """Status of an individual operation."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class OperationDetail:
    """
    Details of a single operation on one repository.

    Used to track what happened to each repository during bulk operations.
    """
    url: str
    status: OperationStatus
    action: str  # e.g., "fetched", "skipped", "ensure_failed"
    branch: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            'url': self.url,
            'status': self.status.value,
            'action': self.action,
        }
        if self.branch:
            result['branch'] = self.branch
        if self.error:
            result['error'] = self.error
        if self.error_code:
            result['code'] = self.error_code
        return result


@dataclass
class OperationSummary:
    """
    Summary of a bulk operation across multiple repositories.

    Counts follow the fetch contract: a repository skipped by the fetch
    cost gate is neither fetched nor failed.
    """
    operation: str  # e.g., "fetch_updates", "get_followers"
    total: int = 0
    fetched: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False
    details: List[OperationDetail] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True if no failures occurred."""
        return self.failed == 0

    @property
    def failures(self) -> List[Dict[str, Any]]:
        return [
            {k: v for k, v in (('url', d.url), ('branch', d.branch), ('error', d.error)) if v}
            for d in self.details if d.status == OperationStatus.FAILED
        ]

    @property
    def fetched_repositories(self) -> List[str]:
        """Repository ids (url#branch:b) that were actually fetched."""
        return [
            f"{d.url}#branch:{d.branch}" for d in self.details
            if d.status == OperationStatus.SUCCESS and d.branch
        ]

    def add_detail(self, detail: OperationDetail) -> None:
        """Add an operation detail and update counts."""
        self.details.append(detail)
        self.total += 1

        if detail.status == OperationStatus.SUCCESS:
            self.fetched += 1
        elif detail.status == OperationStatus.SKIPPED:
            self.skipped += 1
        elif detail.status == OperationStatus.FAILED:
            self.failed += 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            'operation': self.operation,
            'total': self.total,
            'fetched': self.fetched,
            'skipped': self.skipped,
            'failed': self.failed,
        }
        if self.cancelled:
            result['cancelled'] = True
        failures = self.failures
        if failures:
            result['failures'] = failures
        return result
