"""
Phase results for the migration runner.

Every runner phase (validate, workspace, write, connect, migrate) hands back
``Ok(value)`` or ``Err(error)`` instead of raising.  The runner checks each
result in turn and stops at the first ``Err``, which then names the phase
that failed in the :class:`~schemaflow.core.migrations.MigrationOutcome`.

Manifesto:
    - **Failures are values:** a phase never lets an expected failure escape
    - **Typed at the boundary:** foreign exceptions become phase errors where
      they happen (``try_result_with``), not three frames up
    - **Chaining:** ``flat_map`` runs the next step only on success

Flow::

    validate_request ─Ok─> acquire ─Ok─> write_changelog ─Ok─> open ─Ok─> execute
          │                  │                 │                 │            │
          Err                Err               Err               Err          Err
          └──────────────────┴─────── MigrationOutcome(phase=...) ────────────┘

Examples:
    >>> from schemaflow.core.errors import MissingConfigError
    >>> match Err(MissingConfigError("url", "URL is required")):
    ...     case Ok(value):
    ...         print("ok", value)
    ...     case Err(error):
    ...         print(error.key)
    url

Guardrails:
    ❌ DON'T: Raise from a phase function for an expected failure
    ✅ DO: Return Err(<phase error>) with cause= set

Tags:
    result-pattern, error-handling, schemaflow, phases
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from schemaflow.core.errors import SchemaflowError

T = TypeVar("T")
U = TypeVar("U")


def describe_error(error: BaseException) -> dict[str, Any]:
    """Log/JSON form of any exception; ``SchemaflowError`` keeps its own."""
    if isinstance(error, SchemaflowError):
        return error.to_dict()
    return {"error_type": type(error).__name__, "message": str(error)}


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """A phase that succeeded."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        return Ok(f(self.value))

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        """Run the next phase step with this value."""
        return f(self.value)

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """
    A phase that failed.

    ``map`` and ``flat_map`` skip their function, so a chain of steps
    (load driver, build URL, connect) stops at the first failure and the
    caller sees that step's error.
    """

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the error."""
        raise self.error

    def map(self, f: Callable[[T], U]) -> Result[U]:
        return Err(self.error)

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        return Err(self.error)

    def to_dict(self) -> dict[str, Any]:
        return {"ok": False, "error": describe_error(self.error)}

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


def try_result_with(
    f: Callable[[], T],
    error_mapper: Callable[[Exception], Exception] | None = None,
) -> Result[T]:
    """
    Run *f* and turn any exception into ``Err``.

    ``SchemaflowError``s are already phase errors and pass through untouched;
    anything else goes through *error_mapper* when one is given.

    Examples:
        >>> from schemaflow.core.errors import ChangelogIOError
        >>> def write():
        ...     raise OSError("disk full")
        >>> result = try_result_with(
        ...     write,
        ...     lambda e: ChangelogIOError(f"Failed to write changelog: {e}", cause=e),
        ... )
        >>> type(result.error).__name__
        'ChangelogIOError'
    """
    try:
        return Ok(f())
    except SchemaflowError as e:
        return Err(e)
    except Exception as e:
        if error_mapper:
            return Err(error_mapper(e))
        return Err(e)


__all__ = [
    "Ok",
    "Err",
    "Result",
    "describe_error",
    "try_result_with",
]
