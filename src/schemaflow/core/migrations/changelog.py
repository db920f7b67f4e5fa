"""Changelog document model and XML parser.

Reads Liquibase-style ``databaseChangeLog`` XML.  Namespaces are ignored so
documents with or without the ``dbchangelog`` schema declarations parse the
same way.

Example document::

    <databaseChangeLog>
      <property name="schema" value="app"/>
      <changeSet id="1" author="ops" context="main">
        <createTable tableName="person" schemaName="${schema}">
          <column name="id" type="int" autoIncrement="true">
            <constraints primaryKey="true" nullable="false"/>
          </column>
          <column name="name" type="varchar(255)"/>
        </createTable>
      </changeSet>
    </databaseChangeLog>

Only parsing happens here.  Whether a change kind is supported, and what it
does, is decided by :mod:`schemaflow.core.migrations.changes`.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from xml.etree import ElementTree

from schemaflow.core.errors import ChangelogParseError

CHECKSUM_PREFIX = "sf:"

# Children of <changeSet> that are not changes
_CHANGESET_META = {"comment", "validCheckSum", "rollback"}

_PROPERTY_REF = re.compile(r"\$\{([^}]+)\}")
_ALTERNATIVE_SPLIT = re.compile(r"\s*,\s*|\s+or\s+", re.IGNORECASE)
_CONJUNCTION_SPLIT = re.compile(r"\s+and\s+", re.IGNORECASE)
_NEGATION = re.compile(r"^(?:!|not\s+)", re.IGNORECASE)


def _local(tag: str) -> str:
    """Strip the ``{namespace}`` part of an ElementTree tag."""
    return tag.rsplit("}", 1)[-1]


def _flag(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes")


def _split_list(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class ColumnConstraints:
    """``<constraints>`` of a column."""

    primary_key: bool = False
    nullable: bool | None = None
    unique: bool = False
    references: str | None = None
    referenced_table_name: str | None = None
    referenced_column_names: str | None = None
    foreign_key_name: str | None = None
    delete_cascade: bool = False


@dataclass(frozen=True)
class ColumnSpec:
    """``<column>`` inside createTable, addColumn, insert or createIndex."""

    name: str
    type: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)
    constraints: ColumnConstraints | None = None

    @property
    def auto_increment(self) -> bool:
        return _flag(self.attributes.get("autoIncrement"), False)

    @property
    def remarks(self) -> str | None:
        return self.attributes.get("remarks")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "type": self.type, **self.attributes}
        if self.constraints is not None:
            data["constraints"] = {k: v for k, v in vars(self.constraints).items() if v not in (None, False)}
        return data


@dataclass(frozen=True)
class Change:
    """A single change inside a changeset (``createTable``, ``sql``...)."""

    kind: str
    attributes: dict[str, str] = field(default_factory=dict)
    columns: tuple[ColumnSpec, ...] = ()
    text: str | None = None
    comment: str | None = None

    def get(self, name: str, default: str | None = None) -> str | None:
        return self.attributes.get(name, default)

    def require(self, name: str) -> str:
        value = self.attributes.get(name)
        if not value:
            raise ChangelogParseError(f"{self.kind} requires attribute '{name}'")
        return value

    @property
    def description(self) -> str:
        target = (
            self.attributes.get("tableName")
            or self.attributes.get("baseTableName")
            or self.attributes.get("oldTableName")
            or self.attributes.get("indexName")
        )
        return f"{self.kind} {target}" if target else self.kind

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "attributes": self.attributes,
            "columns": [c.to_dict() for c in self.columns],
            "text": _normalize_text(self.text),
        }


@dataclass(frozen=True)
class ChangeSet:
    """
    One atomic, tracked unit of schema change.

    Identity is ``(id, author, filename)``; ``identifier`` renders it as
    ``filename::id::author``, the form used in logs and errors.
    """

    id: str
    author: str
    filename: str
    changes: tuple[Change, ...] = ()
    contexts: str | None = None
    dbms: tuple[str, ...] = ()
    run_always: bool = False
    run_on_change: bool = False
    fail_on_error: bool = True
    comment: str | None = None
    valid_checksums: tuple[str, ...] = ()

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.id, self.author, self.filename)

    @property
    def identifier(self) -> str:
        return f"{self.filename}::{self.id}::{self.author}"

    @property
    def description(self) -> str:
        return "; ".join(change.description for change in self.changes)

    @property
    def checksum(self) -> str:
        payload = json.dumps([c.to_dict() for c in self.changes], sort_keys=True)
        return CHECKSUM_PREFIX + hashlib.md5(payload.encode("utf-8")).hexdigest()

    def accepts_checksum(self, recorded: str | None) -> bool:
        """Whether a recorded checksum is acceptable for this changeset."""
        if recorded is None or recorded == self.checksum:
            return True
        return any(valid.upper() == "ANY" or valid == recorded for valid in self.valid_checksums)

    def matches_contexts(self, contexts: str | None) -> bool:
        return matches_contexts(self.contexts, contexts)

    def matches_dbms(self, vendor: str) -> bool:
        return matches_dbms(self.dbms, vendor)


@dataclass(frozen=True)
class Changelog:
    """Parsed changelog: ordered changesets plus declared properties."""

    filename: str
    changesets: tuple[ChangeSet, ...]
    properties: dict[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.changesets)

    def __iter__(self):
        return iter(self.changesets)


# ── Context / dbms filters ───────────────────────────────────────────────


def matches_contexts(expression: str | None, contexts: str | None) -> bool:
    """Evaluate a changeset context expression against the run contexts.

    Run contexts are a comma separated list.  The expression supports
    ``,`` / ``or`` alternatives, ``and`` conjunctions and ``!`` / ``not``
    negation (no parentheses).  A changeset without contexts always runs,
    and so does every changeset when no run contexts are given.

    Examples:
        >>> matches_contexts("main", "main")
        True
        >>> matches_contexts("test", "main")
        False
        >>> matches_contexts(None, "main")
        True
        >>> matches_contexts("main and !legacy", "main,legacy")
        False
    """
    active = {c.lower() for c in _split_list(contexts)}
    if not active or not expression or not expression.strip():
        return True

    for alternative in _ALTERNATIVE_SPLIT.split(expression.strip()):
        terms = [t for t in _CONJUNCTION_SPLIT.split(alternative) if t.strip()]
        if terms and all(_context_term(term, active) for term in terms):
            return True
    return False


def _context_term(term: str, active: set[str]) -> bool:
    term = term.strip()
    negated = bool(_NEGATION.match(term))
    name = _NEGATION.sub("", term).strip().lower()
    return (name not in active) if negated else (name in active)


def matches_dbms(dbms: tuple[str, ...], vendor: str) -> bool:
    """Check a changeset ``dbms`` list against the connected vendor.

    Examples:
        >>> matches_dbms((), "sqlite")
        True
        >>> matches_dbms(("postgresql", "mysql"), "sqlite")
        False
        >>> matches_dbms(("!sqlite",), "sqlite")
        False
    """
    if not dbms:
        return True
    vendor = vendor.lower()
    included = {d.lower() for d in dbms if not d.startswith("!")}
    excluded = {d[1:].lower() for d in dbms if d.startswith("!")}
    if vendor in excluded or "none" in included:
        return False
    if not included or "all" in included:
        return True
    return vendor in included


# ── Parser ───────────────────────────────────────────────────────────────


def parse_changelog(source: Path | str, *, filename: str | None = None) -> Changelog:
    """Parse a changelog file.

    ``filename`` overrides the name recorded for each changeset; by default
    it is the file's base name, so the same document materialized in
    different directories shares its history.
    """
    path = Path(source)
    try:
        tree = ElementTree.parse(path)
    except ElementTree.ParseError as e:
        raise ChangelogParseError(f"Changelog is not well-formed XML: {e}", cause=e) from e
    except OSError as e:
        raise ChangelogParseError(f"Failed to read changelog: {e}", cause=e) from e
    return _build_changelog(tree.getroot(), filename or path.name)


def parse_changelog_text(text: str, *, filename: str = "changelog.xml") -> Changelog:
    """Parse changelog XML held in memory."""
    try:
        root = ElementTree.fromstring(text)
    except ElementTree.ParseError as e:
        raise ChangelogParseError(f"Changelog is not well-formed XML: {e}", cause=e) from e
    return _build_changelog(root, filename)


def _build_changelog(root: ElementTree.Element, filename: str) -> Changelog:
    if _local(root.tag) != "databaseChangeLog":
        raise ChangelogParseError(f"Root element must be databaseChangeLog, got {_local(root.tag)}")

    properties: dict[str, str] = {}
    for element in root:
        if _local(element.tag) == "property":
            name = element.get("name")
            if not name:
                raise ChangelogParseError("property requires attribute 'name'")
            # first definition wins
            properties.setdefault(name, element.get("value", ""))

    resolver = _PropertyResolver(properties)
    changesets: list[ChangeSet] = []
    seen: set[tuple[str, str, str]] = set()

    for element in root:
        tag = _local(element.tag)
        if tag == "property":
            continue
        if tag != "changeSet":
            raise ChangelogParseError(f"Unsupported changelog element: {tag}")
        changeset = _build_changeset(element, filename, resolver)
        if changeset.key in seen:
            raise ChangelogParseError(
                f"Duplicate change set: {changeset.identifier}",
                changeset=changeset.identifier,
            )
        seen.add(changeset.key)
        changesets.append(changeset)

    return Changelog(filename=filename, changesets=tuple(changesets), properties=properties)


def _build_changeset(element: ElementTree.Element, filename: str, resolver: _PropertyResolver) -> ChangeSet:
    attrs = resolver.attributes(element)
    changeset_id = attrs.get("id")
    author = attrs.get("author")
    if not changeset_id or not author:
        raise ChangelogParseError("changeSet requires attributes 'id' and 'author'")

    changes: list[Change] = []
    comment: str | None = None
    valid_checksums: list[str] = []
    for child in element:
        tag = _local(child.tag)
        if tag == "comment":
            comment = resolver.text(child)
        elif tag == "validCheckSum":
            valid_checksums.append((resolver.text(child) or "").strip())
        elif tag == "rollback":
            continue
        else:
            changes.append(_build_change(child, resolver))

    return ChangeSet(
        id=changeset_id,
        author=author,
        filename=filename,
        changes=tuple(changes),
        contexts=attrs.get("contextFilter") or attrs.get("context"),
        dbms=_split_list(attrs.get("dbms")),
        run_always=_flag(attrs.get("runAlways"), False),
        run_on_change=_flag(attrs.get("runOnChange"), False),
        fail_on_error=_flag(attrs.get("failOnError"), True),
        comment=comment,
        valid_checksums=tuple(v for v in valid_checksums if v),
    )


def _build_change(element: ElementTree.Element, resolver: _PropertyResolver) -> Change:
    columns: list[ColumnSpec] = []
    comment: str | None = None
    for child in element:
        tag = _local(child.tag)
        if tag == "column":
            columns.append(_build_column(child, resolver))
        elif tag == "comment":
            comment = resolver.text(child)

    return Change(
        kind=_local(element.tag),
        attributes=resolver.attributes(element),
        columns=tuple(columns),
        text=resolver.body(element),
        comment=comment,
    )


def _build_column(element: ElementTree.Element, resolver: _PropertyResolver) -> ColumnSpec:
    attrs = resolver.attributes(element)
    name = attrs.pop("name", None)
    if not name:
        raise ChangelogParseError("column requires attribute 'name'")
    column_type = attrs.pop("type", None)

    constraints = None
    for child in element:
        if _local(child.tag) == "constraints":
            c = resolver.attributes(child)
            constraints = ColumnConstraints(
                primary_key=_flag(c.get("primaryKey"), False),
                nullable=_flag(c["nullable"], True) if "nullable" in c else None,
                unique=_flag(c.get("unique"), False),
                references=c.get("references"),
                referenced_table_name=c.get("referencedTableName"),
                referenced_column_names=c.get("referencedColumnNames"),
                foreign_key_name=c.get("foreignKeyName"),
                delete_cascade=_flag(c.get("deleteCascade"), False),
            )

    # <column name="x">literal</column> in insert is a value
    text = resolver.text(element)
    if text and text.strip() and "value" not in attrs:
        attrs["value"] = text.strip()

    return ColumnSpec(name=name, type=column_type, attributes=attrs, constraints=constraints)


class _PropertyResolver:
    """Substitutes ``${name}`` references; unknown references stay as they are."""

    def __init__(self, properties: dict[str, str]) -> None:
        self._properties = properties

    def substitute(self, value: str) -> str:
        return _PROPERTY_REF.sub(lambda m: self._properties.get(m.group(1), m.group(0)), value)

    def attributes(self, element: ElementTree.Element) -> dict[str, str]:
        return {key: self.substitute(value) for key, value in element.attrib.items()}

    def text(self, element: ElementTree.Element) -> str | None:
        if element.text is None:
            return None
        return self.substitute(element.text)

    def body(self, element: ElementTree.Element) -> str | None:
        """Element text with child elements cut out (``<sql><comment>..</comment>SQL</sql>``)."""
        pieces = [element.text] + [child.tail for child in element]
        if all(piece is None for piece in pieces):
            return None
        return self.substitute("".join(piece or "" for piece in pieces))


def _normalize_text(text: str | None) -> str | None:
    if text is None:
        return None
    collapsed = " ".join(text.split())
    return collapsed or None


__all__ = [
    "CHECKSUM_PREFIX",
    "ColumnConstraints",
    "ColumnSpec",
    "Change",
    "ChangeSet",
    "Changelog",
    "matches_contexts",
    "matches_dbms",
    "parse_changelog",
    "parse_changelog_text",
]
