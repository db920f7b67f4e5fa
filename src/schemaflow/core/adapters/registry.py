"""Named data source registry.

Manifesto:
    Hosts configure their connection pools once, at startup, and refer to
    them by name afterwards.  The registry maps names to SQLAlchemy engines
    (each engine owns its pool) so the migration runner can borrow a
    connection without ever knowing how the pool was built.

Features:
    - ``DataSourceRegistry`` with a process-wide ``datasource_registry``
    - ``register()`` accepts an existing ``Engine`` or a URL
    - Thread-safe mapping; checkouts are handled by the engine's own pool

Tags:
    schemaflow, database, registry, connection-pool

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url

from schemaflow.core.errors import ConfigurationError
from schemaflow.core.logging import get_logger

from .urls import normalize_url, redact_url

logger = get_logger(__name__)


class DataSourceRegistry:
    """
    Registry of named data sources.

    Pool sizing for URL registrations defaults to the values in
    :class:`~schemaflow.core.settings.SchemaflowSettings`; explicit keyword
    arguments win.  SQLite URLs get SQLAlchemy's own pool defaults.
    """

    def __init__(self) -> None:
        self._sources: dict[str, Engine] = {}
        self._lock = threading.RLock()

    def register(
        self,
        name: str,
        source: Engine | str,
        *,
        replace: bool = False,
        **engine_kwargs: Any,
    ) -> Engine:
        """Register an engine (or a URL to build one from) under *name*."""
        if not name or not name.strip():
            raise ConfigurationError("Data source name must not be empty")

        engine = source if isinstance(source, Engine) else self._create_engine(source, engine_kwargs)

        with self._lock:
            previous = self._sources.get(name)
            if previous is not None and not replace:
                raise ConfigurationError(f"Data source already registered: {name}")
            self._sources[name] = engine

        if previous is not None and previous is not engine:
            previous.dispose()
        logger.info("datasource.registered", datasource=name, url=redact_url(engine.url))
        return engine

    def get(self, name: str) -> Engine | None:
        with self._lock:
            return self._sources.get(name)

    def unregister(self, name: str, *, dispose: bool = True) -> bool:
        """Remove *name*; returns ``False`` if it was not registered."""
        with self._lock:
            engine = self._sources.pop(name, None)
        if engine is None:
            return False
        if dispose:
            engine.dispose()
        logger.info("datasource.unregistered", datasource=name)
        return True

    def clear(self, *, dispose: bool = True) -> None:
        with self._lock:
            engines = list(self._sources.values())
            self._sources.clear()
        if dispose:
            for engine in engines:
                engine.dispose()

    def list_datasources(self) -> list[str]:
        with self._lock:
            return sorted(self._sources)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._sources

    @staticmethod
    def _create_engine(url: str, engine_kwargs: dict[str, Any]) -> Engine:
        from schemaflow.core.settings import get_settings

        normalized = make_url(normalize_url(url))
        options: dict[str, Any] = {"pool_pre_ping": True}
        if normalized.get_backend_name() != "sqlite":
            settings = get_settings()
            options.update(
                pool_size=settings.pool_size,
                max_overflow=settings.pool_max_overflow,
                pool_timeout=settings.pool_timeout,
            )
        options.update(engine_kwargs)
        return create_engine(normalized, **options)


# Global registry
datasource_registry = DataSourceRegistry()


def register_datasource(name: str, source: Engine | str, **kwargs: Any) -> Engine:
    """
    Register a data source in the global registry.

    Usage:
        register_datasource("reporting", "postgresql+psycopg2://app:secret@db/reporting")
        register_datasource("local", engine)
    """
    return datasource_registry.register(name, source, **kwargs)


__all__ = [
    "DataSourceRegistry",
    "datasource_registry",
    "register_datasource",
]
