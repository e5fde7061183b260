"""
Pytest configuration and shared fixtures for casedocs tests.
"""
import pytest
from hypothesis import settings, Verbosity

from casedocs.core.resilience import ErrorLogger
from casedocs.versions.events import EventBus
from casedocs.versions.models import Actor, DocumentSlot
from casedocs.versions.store import InMemoryVersionStore
from casedocs.versions.state_machine import VersionStateMachine
from casedocs.versions.verification import VerificationWorkflow
from tests.factories import make_pdf

# Configure Hypothesis settings for all property-based tests
settings.register_profile(
    "default",
    max_examples=50,
    deadline=5000,
    suppress_health_check=[],
    verbosity=Verbosity.normal,
)

settings.register_profile(
    "ci",
    max_examples=200,
    deadline=10000,
    suppress_health_check=[],
    verbosity=Verbosity.quiet,
)

settings.register_profile(
    "debug",
    max_examples=10,
    deadline=None,
    suppress_health_check=[],
    verbosity=Verbosity.verbose,
)

settings.load_profile("default")

@pytest.fixture
def slot():
    return DocumentSlot(case_id="case-1", document_type="passport_copy")


@pytest.fixture
def client():
    """Case client who uploads documents."""
    return Actor(user_id="client-1", role="end_user")


@pytest.fixture
def reviewer():
    return Actor(user_id="employee-1", role="employee")


@pytest.fixture
def pdf_upload():
    return make_pdf()


@pytest.fixture
def store():
    """Provide a fresh in-memory version store for each test."""
    return InMemoryVersionStore()


@pytest.fixture
def error_logger():
    return ErrorLogger()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def state_machine(store, event_bus, error_logger):
    return VersionStateMachine(store, event_bus=event_bus, error_logger=error_logger)


@pytest.fixture
def workflow(state_machine):
    return VerificationWorkflow(state_machine)
