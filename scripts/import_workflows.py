#!/usr/bin/env python3
"""
Import YAML workflow definitions into the approval database.

Definitions are upserted by (tenant, name).  Entries whose content is
unchanged are skipped; changed entries get a new version.  In-flight
requests keep the definition snapshot they were created with.

Usage:
  python3 scripts/import_workflows.py approval_config/workflows/example.yaml
  python3 scripts/import_workflows.py workflows.yaml --tenant acme --settings approval.yaml
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Import approval workflow definitions from YAML")
    p.add_argument("path", help="YAML file with a top-level 'workflows' list")
    p.add_argument("--tenant", default=None, help="Tenant id (overrides the file's tenant_id)")
    p.add_argument("--settings", default=None, help="Engine settings YAML")
    p.add_argument("--db-url", default=None, help="Database URL (overrides settings)")
    p.add_argument("--actor", default="workflow-import", help="Actor recorded in the audit trail")
    p.add_argument("--create-tables", action="store_true", help="Create missing tables first")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from approval_config import load_settings, load_workflows
    from approval_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from approval_kernel.db.immutability import register_immutability_listeners
    from approval_kernel.exceptions import ApprovalKernelError
    from approval_kernel.services.auditor_service import AuditorService
    from approval_services.workflow_store import WorkflowDefinitionStore

    try:
        settings = load_settings(args.settings)
        workflow_file = load_workflows(
            args.path, tenant_id=args.tenant, aliases=settings.priority_aliases,
        )
    except ApprovalKernelError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    init_engine_from_url(args.db_url or settings.database_url)
    register_immutability_listeners()
    if args.create_tables:
        create_tables()

    print(f"  Importing {len(workflow_file.definitions)} workflow(s) for tenant {workflow_file.tenant_id!r}")
    try:
        with session_scope() as session:
            store = WorkflowDefinitionStore(session, audit=AuditorService(session))
            summary = store.import_workflows(workflow_file, actor_id=args.actor)
    except ApprovalKernelError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    print(f"  created:   {', '.join(summary.created) or '-'}")
    print(f"  updated:   {', '.join(summary.updated) or '-'}")
    print(f"  unchanged: {', '.join(summary.unchanged) or '-'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
