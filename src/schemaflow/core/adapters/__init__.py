"""Connection acquisition -- pooled data sources and direct driver connections.

Manifesto:
    The migration runner must not care where its connection comes from.  A
    host may hand it a named, pre-configured pool or just a driver, a URL and
    credentials.  Both paths end in the same place: one exclusively-owned
    connection wrapped in a lease that is rolled back and closed no matter
    how the invocation ends.

    Driver modules are **import-guarded**: they are imported by name when a
    direct connection is opened, never at import time.  Install the extra for
    the database you target::

        pip install schemaflow[postgresql]   # psycopg2-binary
        pip install schemaflow[mysql]        # mysql-connector-python
        pip install schemaflow[oracle]       # oracledb

Architecture::

    ConnectionFactory (factory.py)     Protocol: open() -> Result[ConnectionLease]
        |-- PooledConnectionFactory    name -> DataSourceRegistry -> engine.connect()
        |-- DirectConnectionFactory    import driver, URL + credentials, NullPool engine

    DataSourceRegistry (registry.py)   Process-wide name -> Engine mapping
    ConnectionLease (lease.py)         OPEN/MIGRATING/COMMITTED/FAILED/CLOSING/CLOSED
    urls.py                            JDBC URL normalization, password redaction

Modules
-------
factory         ConnectionFactory protocol + implementations
registry        DataSourceRegistry + datasource_registry + register_datasource()
lease           ConnectionLease and its state machine
urls            normalize_url / with_driver / redact_url

Guardrails:
    ❌ Importing optional drivers at module scope
    ✅ ``DirectConnectionFactory`` imports them at ``open()`` time
    ❌ Logging ``str(url)`` with a password in it
    ✅ ``redact_url(url)``

Tags:
    schemaflow, database, adapters, connection-pool, import-guarded,
    registry-pattern

Doc-Types:
    package-overview, architecture-map, module-index
"""

from .factory import (
    ConnectionFactory,
    DirectConnectionFactory,
    PooledConnectionFactory,
    connection_factory_for,
)
from .lease import ConnectionLease, ConnectionState
from .registry import DataSourceRegistry, datasource_registry, register_datasource
from .urls import normalize_url, redact_url, with_driver

__all__ = [
    # Factories
    "ConnectionFactory",
    "PooledConnectionFactory",
    "DirectConnectionFactory",
    "connection_factory_for",
    # Lease
    "ConnectionLease",
    "ConnectionState",
    # Registry
    "DataSourceRegistry",
    "datasource_registry",
    "register_datasource",
    # URLs
    "normalize_url",
    "redact_url",
    "with_driver",
]
