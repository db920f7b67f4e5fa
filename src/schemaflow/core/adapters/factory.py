"""Connection factories.

The runner never opens connections itself.  It asks a ``ConnectionFactory``
for a :class:`ConnectionLease` and gets back ``Ok(lease)`` or an ``Err``
describing why no connection could be had.

Two implementations:

==========================  ===============================================
``PooledConnectionFactory``  borrow from a named engine in the registry
``DirectConnectionFactory``  import a DB-API driver module and connect with
                             URL + credentials through a private engine
==========================  ===============================================
"""

from __future__ import annotations

import importlib
from types import ModuleType
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.pool import NullPool

from schemaflow.core.errors import DatabaseConnectionError, DriverError
from schemaflow.core.logging import get_logger
from schemaflow.core.request import ConnectionSpec, DirectConnection, PooledDataSource
from schemaflow.core.result import Err, Ok, Result

from .lease import ConnectionLease
from .registry import DataSourceRegistry, datasource_registry
from .urls import normalize_url, redact_url, with_driver

logger = get_logger(__name__)


@runtime_checkable
class ConnectionFactory(Protocol):
    """Anything that can hand out one exclusively-owned connection."""

    def open(self) -> Result[ConnectionLease]:
        ...


class PooledConnectionFactory:
    """Borrow a connection from a registered data source."""

    def __init__(self, name: str, registry: DataSourceRegistry | None = None) -> None:
        self.name = name
        self.registry = registry if registry is not None else datasource_registry

    def open(self) -> Result[ConnectionLease]:
        engine = self.registry.get(self.name)
        if engine is None:
            return Err(
                DatabaseConnectionError(
                    f"Data source not registered: {self.name}",
                    retryable=False,
                ).with_context(datasource=self.name)
            )

        try:
            connection = engine.connect()
        except Exception as e:
            return Err(
                DatabaseConnectionError(
                    f"Failed to obtain connection from data source {self.name}: {e}",
                    cause=e,
                ).with_context(datasource=self.name)
            )

        logger.debug("connection.opened", source=f"datasource:{self.name}")
        return Ok(ConnectionLease(connection, source=f"datasource:{self.name}"))


class DirectConnectionFactory:
    """Open a connection through a DB-API driver module.

    ``driver`` is the importable module name (``sqlite3``, ``psycopg2``,
    ``mysql.connector``, ``oracledb``...).  ``url`` may be a SQLAlchemy URL or a
    JDBC-style one; ``user`` / ``password`` are merged into it for every
    backend except SQLite, which has no notion of credentials.
    """

    def __init__(
        self,
        driver: str,
        url: str,
        user: str | None = None,
        password: str | None = None,
        **engine_options: Any,
    ) -> None:
        self.driver = driver
        self.url = url
        self.user = user
        self.password = password
        self.engine_options = engine_options

    def load_driver(self) -> Result[ModuleType]:
        """Import the driver module and check it looks like DB-API 2.0."""
        try:
            module = importlib.import_module(self.driver)
        except ImportError as e:
            return Err(DriverError(self.driver, f"Failed to initialize driver {self.driver}: {e}", cause=e))
        except Exception as e:
            return Err(DriverError(self.driver, f"Driver {self.driver} failed to load: {e}", cause=e))

        if not callable(getattr(module, "connect", None)):
            return Err(DriverError(self.driver, f"{self.driver} is not a DB-API driver module"))
        return Ok(module)

    def build_url(self, driver: ModuleType) -> Result[URL]:
        try:
            url = make_url(normalize_url(self.url))
        except ArgumentError as e:
            return Err(
                DatabaseConnectionError(f"Invalid database URL: {e}", retryable=False, cause=e)
            )

        url = with_driver(url, driver.__name__)
        if url.get_backend_name() != "sqlite":
            url = url.set(username=self.user, password=self.password)
        return Ok(url)

    def open(self) -> Result[ConnectionLease]:
        return self.load_driver().flat_map(
            lambda module: self.build_url(module).flat_map(lambda url: self._connect(url, module))
        )

    def _connect(self, url: URL, module: ModuleType) -> Result[ConnectionLease]:
        shown = redact_url(url)
        engine = None
        try:
            engine = create_engine(url, module=module, poolclass=NullPool, **self.engine_options)
            connection = engine.connect()
        except Exception as e:
            if engine is not None:
                engine.dispose()
            return Err(
                DatabaseConnectionError(f"Failed to connect to {shown}: {e}", cause=e).with_context(url=shown)
            )

        logger.debug("connection.opened", source=f"direct:{shown}")
        return Ok(ConnectionLease(connection, source=f"direct:{shown}", on_close=engine.dispose))


def connection_factory_for(
    spec: ConnectionSpec,
    *,
    registry: DataSourceRegistry | None = None,
) -> ConnectionFactory:
    """Pick the factory matching a request's connection variant."""
    match spec:
        case PooledDataSource(name=name):
            return PooledConnectionFactory(name or "", registry)
        case DirectConnection(driver=driver, url=url, user=user, password=password):
            return DirectConnectionFactory(driver or "", url or "", user, password)
    raise TypeError(f"Unsupported connection spec: {spec!r}")


__all__ = [
    "ConnectionFactory",
    "PooledConnectionFactory",
    "DirectConnectionFactory",
    "connection_factory_for",
]
