"""
Pytest fixtures for the approval engine test suite.

Provides:
- An in-memory SQLite engine with all tables, fresh per test
- A session plus the wired services (store, resolver, orchestrator, auditor)
- A user directory seeding helper and workflow builders
- Recording fakes for notifications and entity-status callbacks
- Structured log capture
"""

import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from approval_config.settings import EngineSettings
from approval_kernel.db.base import Base
from approval_kernel.db.engine import create_sqlite_engine
from approval_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.workflow import (
    ApproverType,
    Condition,
    ConditionOperator,
    EscalationRule,
    Step,
    WorkflowDefinition,
)
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
import approval_kernel.models  # noqa: F401
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.user_directory import SqlUserDirectory
from approval_services.approver_resolver import ApproverResolver
from approval_services.orchestrator import StepOrchestrator
from approval_services.workflow_store import WorkflowDefinitionStore

TENANT = "acme"
COMPANY = "acme-us"
ADMIN = "admin-user"

# Naive: SQLite hands back naive datetimes.
START = datetime(2024, 1, 15, 9, 0, 0)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.create_approval_request(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_request_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test."""
    engine = create_sqlite_engine()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    sess = Session(bind=db_engine, expire_on_commit=False)
    yield sess
    sess.close()


@pytest.fixture
def session_factory(db_engine):
    """Factory for tests that commit through several sessions.

    The in-memory pool shares one connection: open one session at a time.
    """
    return sessionmaker(bind=db_engine, expire_on_commit=False)


# =============================================================================
# Clock and settings
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(START)


@pytest.fixture
def settings():
    return EngineSettings()


# =============================================================================
# Collaborator fakes
# =============================================================================


class RecordingNotifier:
    """NotificationDispatcher that records (identity, notice) pairs."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def notify(self, identity, notice):
        if self.fail:
            raise ConnectionError("mail relay unavailable")
        self.sent.append((identity, notice))

    @property
    def recipients(self) -> list[str]:
        return [identity.user_id for identity, _ in self.sent]


class RecordingEntityStatus:
    """EntityStatusCallback that records (entity_type, entity_id, outcome)."""

    def __init__(self):
        self.calls = []

    def on_workflow_resolved(self, entity_type, entity_id, outcome):
        self.calls.append((entity_type, entity_id, outcome))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def entity_status():
    return RecordingEntityStatus()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def auditor_service(session, deterministic_clock):
    return AuditorService(session, deterministic_clock)


@pytest.fixture
def directory(session):
    return SqlUserDirectory(session)


@pytest.fixture
def add_user(directory):
    """Register directory users; each is created one second after the last.

    Usage::

        add_user("mgr-1", role="manager")
        add_user("head-fin", department="finance", head=True)
    """
    counter = {"n": 0}

    def _add(
        user_id,
        role=None,
        department=None,
        head=False,
        company_id=COMPANY,
        active=True,
        tenant_id=TENANT,
    ):
        counter["n"] += 1
        return directory.register_user(
            tenant_id,
            user_id,
            START - timedelta(days=1) + timedelta(seconds=counter["n"]),
            company_id=company_id,
            role=role,
            department=department,
            is_department_head=head,
            is_active=active,
            name=user_id.replace("-", " ").title(),
            email=f"{user_id}@example.com",
        )

    return _add


@pytest.fixture
def store(session, auditor_service, deterministic_clock):
    return WorkflowDefinitionStore(session, audit=auditor_service, clock=deterministic_clock)


@pytest.fixture
def resolver(directory):
    return ApproverResolver(directory)


@pytest.fixture
def make_orchestrator(
    session, store, resolver, deterministic_clock, settings,
    notifier, entity_status, auditor_service,
):
    """Build a StepOrchestrator, overriding any collaborator by keyword."""

    def _make(**overrides):
        kwargs = dict(
            clock=deterministic_clock,
            settings=settings,
            notifier=notifier,
            entity_status=entity_status,
            audit=auditor_service,
        )
        kwargs.update(overrides)
        return StepOrchestrator(session, store, resolver, **kwargs)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


# =============================================================================
# Workflow builders
# =============================================================================


def role_step(key, role, order=0, **kwargs):
    return Step(
        key=key,
        name=kwargs.pop("name", key.replace("-", " ").title()),
        order=order,
        approver_type=ApproverType.ROLE,
        role=role,
        **kwargs,
    )


def user_step(key, user_id, order=0, **kwargs):
    return Step(
        key=key,
        name=kwargs.pop("name", key.replace("-", " ").title()),
        order=order,
        approver_type=ApproverType.USER,
        user_id=user_id,
        **kwargs,
    )


def department_step(key, department, order=0, **kwargs):
    return Step(
        key=key,
        name=kwargs.pop("name", key.replace("-", " ").title()),
        order=order,
        approver_type=ApproverType.DEPARTMENT,
        department=department,
        **kwargs,
    )


def amount_step(key, role, threshold, order=0, **kwargs):
    return Step(
        key=key,
        name=kwargs.pop("name", key.replace("-", " ").title()),
        order=order,
        approver_type=ApproverType.AMOUNT_BASED,
        role=role,
        amount_threshold=Decimal(str(threshold)),
        **kwargs,
    )


def condition(field, operator, value, optional=False):
    return Condition(field, ConditionOperator(operator), value, optional)


def definition(name="Invoice approval", steps=None, entity_type="invoice", **kwargs):
    return WorkflowDefinition(
        tenant_id=kwargs.pop("tenant_id", TENANT),
        name=name,
        entity_type=entity_type,
        steps=tuple(steps or (role_step("manager", "manager"),)),
        **kwargs,
    )


@pytest.fixture
def builders():
    """Namespace of workflow builder helpers."""

    class _Builders:
        role_step = staticmethod(role_step)
        user_step = staticmethod(user_step)
        department_step = staticmethod(department_step)
        amount_step = staticmethod(amount_step)
        condition = staticmethod(condition)
        definition = staticmethod(definition)
        escalation_rule = staticmethod(EscalationRule)

    return _Builders


@pytest.fixture
def create_workflow(store):
    """Store a definition built from ``definition(**kwargs)`` and return it."""

    def _create(**kwargs):
        return store.create_workflow(definition(**kwargs), actor_id=ADMIN)

    return _create


@pytest.fixture
def start_request(orchestrator):
    """Create an approval request with sensible defaults."""

    def _start(entity_id="INV-1001", metadata=None, entity_type="invoice", **kwargs):
        return orchestrator.create_approval_request(
            tenant_id=kwargs.pop("tenant_id", TENANT),
            company_id=kwargs.pop("company_id", COMPANY),
            entity_type=entity_type,
            entity_id=entity_id,
            requested_by=kwargs.pop("requested_by", "clerk-1"),
            metadata=metadata if metadata is not None else {"amount": 25000},
            **kwargs,
        )

    return _start
