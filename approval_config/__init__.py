"""
approval_config -- engine settings and YAML-authored workflow definitions.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and below
    ``approval_services``.  The kernel MUST NEVER import from
    ``approval_config``.

Usage:
    from approval_config import load_settings, load_workflows

    settings = load_settings("approval.yaml")
    workflow_file = load_workflows("approval_config/workflows/example.yaml")
"""

from approval_config.loader import (
    WorkflowFile,
    compute_checksum,
    load_workflows,
    parse_priority,
    parse_workflow,
)
from approval_config.settings import (
    DEFAULT_PRIORITY_ALIASES,
    EngineSettings,
    load_settings,
)
from approval_config.validator import (
    DefinitionValidationResult,
    check_definition_data,
    validate_definition,
)

__all__ = [
    "DEFAULT_PRIORITY_ALIASES",
    "DefinitionValidationResult",
    "EngineSettings",
    "WorkflowFile",
    "check_definition_data",
    "compute_checksum",
    "load_settings",
    "load_workflows",
    "parse_priority",
    "parse_workflow",
    "validate_definition",
]
