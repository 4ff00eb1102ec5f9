"""
Workflow Definition Loader (``approval_config.loader``).

Responsibility
--------------
Loads YAML workflow files and parses each entry of their ``workflows:``
list into a typed ``WorkflowDefinition``.  Used by the import script and by
tests; the orchestrator only ever reads definitions from the store.

File format
-----------
::

    tenant_id: acme            # optional, may be supplied by the caller
    workflows:
      - name: Large invoices
        entity_type: invoice
        priority: high         # int or alias (low/medium/high/critical)
        conditions:
          - {field: amount, operator: greater_than, value: 10000}
        steps:
          - {key: manager, order: 1, approver_type: role, role: manager,
             escalation_hours: 24}

Invariants enforced
-------------------
* Every definition passes ``validate_definition`` before it is typed.
* ``compute_checksum`` is a deterministic SHA-256 of the file content, for
  change detection on re-import.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid definition or unknown priority alias -> ``WorkflowDefinitionError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from approval_config.settings import DEFAULT_PRIORITY_ALIASES
from approval_config.validator import validate_definition
from approval_kernel.domain.serialization import definition_from_dict
from approval_kernel.domain.workflow import WorkflowDefinition
from approval_kernel.exceptions import WorkflowDefinitionError
from approval_kernel.utils.hashing import hash_payload


@dataclass(frozen=True)
class WorkflowFile:
    """Parsed content of one YAML workflow file."""

    source: str
    tenant_id: str
    checksum: str
    definitions: tuple[WorkflowDefinition, ...]


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_priority(
    value: Any,
    aliases: Mapping[str, int] = DEFAULT_PRIORITY_ALIASES,
) -> int:
    """Integer priority from an int or a named alias.  Higher wins."""
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError(f"Invalid priority {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    if text in aliases:
        return aliases[text]
    try:
        return int(text)
    except ValueError:
        raise ValueError(
            f"Unknown priority {value!r}; expected an integer or one of "
            + ", ".join(sorted(aliases))
        ) from None


def parse_workflow(
    data: Mapping[str, Any],
    tenant_id: str,
    aliases: Mapping[str, int] = DEFAULT_PRIORITY_ALIASES,
) -> WorkflowDefinition:
    """Validate and type one workflow entry."""
    name = str(data.get("name") or "<unnamed>")
    doc = dict(data)
    doc["tenant_id"] = tenant_id
    doc.pop("workflow_id", None)
    try:
        doc["priority"] = parse_priority(data.get("priority"), aliases)
    except ValueError as exc:
        raise WorkflowDefinitionError(name, [str(exc)]) from exc

    validate_definition(doc)
    return definition_from_dict(doc)


def compute_checksum(data: Mapping[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    return hash_payload(dict(data))


def load_workflows(
    path: str | Path,
    tenant_id: str | None = None,
    aliases: Mapping[str, int] = DEFAULT_PRIORITY_ALIASES,
) -> WorkflowFile:
    """
    Load every workflow in a YAML file.

    ``tenant_id`` overrides the file's own ``tenant_id`` key.
    """
    raw = load_yaml_file(Path(path))
    effective_tenant = tenant_id or raw.get("tenant_id")
    if not effective_tenant:
        raise WorkflowDefinitionError(
            str(path), ["no tenant_id given and none declared in the file"],
        )

    entries = raw.get("workflows") or []
    if not isinstance(entries, list):
        raise WorkflowDefinitionError(str(path), ["'workflows' must be a list"])

    definitions = tuple(
        parse_workflow(entry, str(effective_tenant), aliases) for entry in entries
    )
    return WorkflowFile(
        source=str(path),
        tenant_id=str(effective_tenant),
        checksum=compute_checksum(raw),
        definitions=definitions,
    )
