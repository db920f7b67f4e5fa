"""Connection URL helpers.

Hosts that used to configure JDBC data sources pass URLs such as
``jdbc:postgresql://db:5432/app`` or ``jdbc:sqlite:/var/lib/app.db``.  These
helpers turn them into SQLAlchemy URLs and make sure credentials never end
up in logs.
"""

from __future__ import annotations

from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError, NoSuchModuleError

_JDBC_PREFIX = "jdbc:"

# DB-API module name -> SQLAlchemy driver name, where they differ
_DRIVER_ALIASES = {
    "mysql.connector": "mysqlconnector",
}


def normalize_url(url: str) -> str:
    """Convert a JDBC-style URL into a SQLAlchemy URL string.

    Examples:
        >>> normalize_url("jdbc:postgresql://localhost:5432/app")
        'postgresql://localhost:5432/app'
        >>> normalize_url("jdbc:sqlite:/tmp/app.db")
        'sqlite:////tmp/app.db'
        >>> normalize_url("sqlite:///app.db")
        'sqlite:///app.db'
    """
    url = url.strip()
    if url.startswith(_JDBC_PREFIX):
        url = url[len(_JDBC_PREFIX):]

    # jdbc:sqlite:<path> carries a bare path instead of an authority
    if url.startswith("sqlite:") and not url.startswith("sqlite://"):
        url = "sqlite:///" + url[len("sqlite:"):]

    return url


def with_driver(url: URL, driver: str) -> URL:
    """Name *driver* in the URL when it is a known SQLAlchemy driver.

    ``postgresql://`` with driver ``psycopg2`` becomes
    ``postgresql+psycopg2://``.  URLs that already name a driver, and driver
    modules SQLAlchemy has no dialect for (``sqlite3`` is the default for
    ``sqlite://``), are returned unchanged.
    """
    if "+" in url.drivername:
        return url

    driver = _DRIVER_ALIASES.get(driver, driver)
    candidate = url.set(drivername=f"{url.drivername}+{driver}")
    try:
        candidate.get_dialect()
    except (NoSuchModuleError, ArgumentError):
        return url
    return candidate


def redact_url(url: str | URL | None) -> str | None:
    """Render a URL with its password masked."""
    if url is None:
        return None
    try:
        parsed = url if isinstance(url, URL) else make_url(normalize_url(url))
    except ArgumentError:
        return "<invalid url>"
    return parsed.render_as_string(hide_password=True)


__all__ = [
    "normalize_url",
    "with_driver",
    "redact_url",
]
