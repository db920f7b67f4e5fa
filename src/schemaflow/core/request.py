"""Migration request model and input validation.

A request is built fresh for every invocation from the loose string
properties the host pipeline supplies.  Which connection variant it uses is
decided by which fields are populated: a data source name selects the pooled
variant, anything else the direct variant.

Validation runs before any I/O and reports the first missing field.
"""

from __future__ import annotations

from dataclasses import dataclass

from schemaflow.core.errors import MissingConfigError
from schemaflow.core.result import Err, Ok, Result

DEFAULT_CONTEXTS = "main"


@dataclass(frozen=True)
class PooledDataSource:
    """Connection obtained from a named, host-registered data source."""

    name: str | None

    @property
    def mode(self) -> str:
        return "pooled"


@dataclass(frozen=True)
class DirectConnection:
    """Connection opened directly through a DB-API driver module."""

    driver: str | None
    url: str | None
    user: str | None
    password: str | None = None

    @property
    def mode(self) -> str:
        return "direct"

    def __repr__(self) -> str:
        # never render the password
        return (
            f"DirectConnection(driver={self.driver!r}, url={self.url!r}, "
            f"user={self.user!r}, password={'***' if self.password else None})"
        )


ConnectionSpec = PooledDataSource | DirectConnection


@dataclass(frozen=True)
class MigrationRequest:
    """One migration invocation: changelog text plus where to apply it."""

    changelog: str | None
    connection: ConnectionSpec
    contexts: str = DEFAULT_CONTEXTS

    @classmethod
    def from_properties(
        cls,
        *,
        changelog: str | None,
        user: str | None = None,
        password: str | None = None,
        url: str | None = None,
        driver: str | None = None,
        datasource: str | None = None,
        contexts: str | None = None,
    ) -> MigrationRequest:
        """Build a request from mediator-style properties."""
        connection: ConnectionSpec
        if _present(datasource):
            connection = PooledDataSource(name=datasource)
        else:
            connection = DirectConnection(driver=driver, url=url, user=user, password=password)
        return cls(
            changelog=changelog,
            connection=connection,
            contexts=contexts if _present(contexts) else DEFAULT_CONTEXTS,
        )


def _present(value: str | None) -> bool:
    return value is not None and value.strip() != ""


def validate_request(request: MigrationRequest) -> Result[MigrationRequest]:
    """Check that every field required for the request's mode is set.

    Returns ``Err(MissingConfigError)`` naming the first missing field.
    """
    if not _present(request.changelog):
        return Err(MissingConfigError("changelog", "ChangeLog is required"))

    match request.connection:
        case PooledDataSource(name=name):
            if not _present(name):
                return Err(MissingConfigError("datasource", "DataSource is required"))
        case DirectConnection() as direct:
            required = (
                ("user", "User is required"),
                ("password", "Password is required"),
                ("url", "URL is required"),
                ("driver", "Driver is required"),
            )
            for key, message in required:
                if not _present(getattr(direct, key)):
                    return Err(MissingConfigError(key, message))

    return Ok(request)


__all__ = [
    "DEFAULT_CONTEXTS",
    "PooledDataSource",
    "DirectConnection",
    "ConnectionSpec",
    "MigrationRequest",
    "validate_request",
]
