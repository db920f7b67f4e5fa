"""
Schemaflow - changelog-driven schema migrations for message pipelines.

- schemaflow.core: request model, workspace, connections, migration engine
- schemaflow.mediator: ChangelogMediator for host pipelines
- schemaflow.cli: ``schemaflow`` command line
"""

__version__ = "0.1.0"

from schemaflow.core.migrations import MigrationOutcome, MigrationRunner  # noqa: E402
from schemaflow.mediator import ChangelogMediator, SimpleMessageContext  # noqa: E402

__all__ = [
    "__version__",
    "ChangelogMediator",
    "MigrationOutcome",
    "MigrationRunner",
    "SimpleMessageContext",
]
