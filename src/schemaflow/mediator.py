"""Pipeline mediator.

Hosts that drive schemaflow from a message pipeline configure a
:class:`ChangelogMediator` through plain string properties and call
:meth:`~ChangelogMediator.mediate` once per message.  The outcome is written
onto the message context so later pipeline steps can act on it.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from schemaflow.core.migrations import MigrationOutcome, MigrationRunner
from schemaflow.core.request import MigrationRequest
from schemaflow.core.settings import SchemaflowSettings, get_settings

PROPERTY_PREFIX = "schemaflow.migration."
PROP_SUCCESS = PROPERTY_PREFIX + "success"
PROP_PHASE = PROPERTY_PREFIX + "phase"
PROP_MESSAGE = PROPERTY_PREFIX + "message"
PROP_APPLIED = PROPERTY_PREFIX + "applied"


@runtime_checkable
class MessageContext(Protocol):
    """The part of a host message context the mediator writes to."""

    def set_property(self, name: str, value: Any) -> None:
        ...


class SimpleMessageContext:
    """Dict-backed :class:`MessageContext` for hosts without their own."""

    def __init__(self, properties: dict[str, Any] | None = None) -> None:
        self.properties: dict[str, Any] = dict(properties or {})

    def set_property(self, name: str, value: Any) -> None:
        self.properties[name] = value

    def get_property(self, name: str, default: Any = None) -> Any:
        return self.properties.get(name, default)


class ChangelogMediator:
    """
    Applies a changelog to a database each time a message passes through.

    Configure either ``datasource`` (a name registered with
    :func:`~schemaflow.core.adapters.register_datasource`) or ``driver``,
    ``url``, ``user`` and ``password``; ``changelog`` holds the changelog XML
    and ``contexts`` the run contexts (``main`` unless set).

    ``mediate`` returns ``False`` when the configuration is incomplete or no
    workspace could be created.  Any later failure is logged and reported on
    the message context, and ``mediate`` still returns ``True`` unless
    ``propagate_failures`` is set.
    """

    def __init__(
        self,
        *,
        runner: MigrationRunner | None = None,
        settings: SchemaflowSettings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.user: str | None = None
        self.password: str | None = None
        self.url: str | None = None
        self.driver: str | None = None
        self.changelog: str | None = None
        self.datasource: str | None = None
        self.contexts: str = settings.contexts
        self.propagate_failures: bool = settings.propagate_failures
        self._runner = runner or MigrationRunner(settings=settings)
        self.last_outcome: MigrationOutcome | None = None

    def build_request(self) -> MigrationRequest:
        return MigrationRequest.from_properties(
            changelog=self.changelog,
            user=self.user,
            password=self.password,
            url=self.url,
            driver=self.driver,
            datasource=self.datasource,
            contexts=self.contexts,
        )

    def mediate(self, context: MessageContext) -> bool:
        outcome = self._runner.run(self.build_request())
        self.last_outcome = outcome

        context.set_property(PROP_SUCCESS, outcome.success)
        context.set_property(PROP_PHASE, outcome.phase.value if outcome.phase else None)
        context.set_property(PROP_MESSAGE, outcome.message)
        context.set_property(PROP_APPLIED, list(outcome.applied))

        return outcome.continue_pipeline(self.propagate_failures)


__all__ = [
    "ChangelogMediator",
    "MessageContext",
    "SimpleMessageContext",
    "PROP_SUCCESS",
    "PROP_PHASE",
    "PROP_MESSAGE",
    "PROP_APPLIED",
]
