"""
Result domain objects for gitsocial.

Every public operation returns a Result instead of raising. A Result is
either a success carrying data, or a failure carrying an ErrorInfo with a
stable code that callers can branch on.
"""

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar('T')


@dataclass(frozen=True)
class ErrorInfo:
    """Structured error: stable code, human message, optional details."""
    code: str
    message: str
    details: Any = None

    def to_dict(self) -> Dict[str, Any]:
        result = {'code': self.code, 'message': self.message}
        if self.details is not None:
            result['details'] = self.details if isinstance(
                self.details, (dict, list, str, int, float, bool)
            ) else str(self.details)
        return result


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Discriminated success/failure result.

    Example:
        result = lists.get_list(workdir, "reading")
        if result.success and result.data:
            print(result.data.name)
        elif not result.success:
            print(result.error.code)
    """
    success: bool
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> 'Result[T]':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: str, message: str, details: Any = None) -> 'Result[T]':
        return cls(success=False, error=ErrorInfo(code, message, details))

    @classmethod
    def from_error(cls, error: Optional[ErrorInfo], code: str = 'UNEXPECTED_ERROR',
                   message: str = 'Operation failed') -> 'Result[T]':
        """Propagate another result's error, or a generic one if it has none."""
        return cls(success=False, error=error or ErrorInfo(code, message))

    @property
    def code(self) -> Optional[str]:
        """Error code, or None on success."""
        return self.error.code if self.error else None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'success': self.success}
        if self.data is not None:
            data = self.data
            if hasattr(data, 'to_dict'):
                data = data.to_dict()
            elif isinstance(data, list):
                data = [d.to_dict() if hasattr(d, 'to_dict') else d for d in data]
            result['data'] = data
        if self.error:
            result['error'] = self.error.to_dict()
        return result
