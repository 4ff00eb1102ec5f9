"""
Tests for the approval request table's uniqueness index.

- Schema creation emits the partial unique index on SQLite
- A second active request for the same entity is rejected by the database
- Terminal requests do not count against the index
"""

from uuid import uuid4

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from approval_kernel.models.approval import ApprovalRequestModel

TENANT = "acme"


@pytest.fixture
def workflow(create_workflow):
    return create_workflow()


def _request_row(workflow, status, deterministic_clock, entity_id="INV-1"):
    return ApprovalRequestModel(
        id=uuid4(),
        tenant_id=TENANT,
        company_id="acme-us",
        entity_type="invoice",
        entity_id=entity_id,
        workflow_id=workflow.workflow_id,
        definition_snapshot={},
        current_step_order=0,
        status=status,
        requested_by="clerk-1",
        request_metadata={},
        created_at=deterministic_clock.now(),
    )


class TestActiveRequestIndex:

    def test_index_created(self, db_engine):
        indexes = {ix["name"]: ix for ix in inspect(db_engine).get_indexes("approval_requests")}
        active = indexes["ix_approval_requests_active_unique"]
        assert active["unique"]
        assert active["column_names"] == ["tenant_id", "entity_type", "entity_id"]

    @pytest.mark.parametrize("second_status", ["pending", "escalated"])
    def test_second_active_request_rejected(
        self, session, workflow, deterministic_clock, second_status,
    ):
        session.add(_request_row(workflow, "pending", deterministic_clock))
        session.flush()

        with pytest.raises(IntegrityError):
            with session.begin_nested():
                session.add(_request_row(workflow, second_status, deterministic_clock))
                session.flush()

    def test_terminal_requests_do_not_conflict(self, session, workflow, deterministic_clock):
        session.add(_request_row(workflow, "rejected", deterministic_clock))
        session.add(_request_row(workflow, "completed", deterministic_clock))
        session.add(_request_row(workflow, "pending", deterministic_clock))
        session.flush()

    def test_other_entities_do_not_conflict(self, session, workflow, deterministic_clock):
        session.add(_request_row(workflow, "pending", deterministic_clock, entity_id="INV-1"))
        session.add(_request_row(workflow, "pending", deterministic_clock, entity_id="INV-2"))
        session.flush()
