"""
Pytest configuration and fixtures for cosimo tests.
"""

import itertools

import pytest


@pytest.fixture
def clock():
    """Deterministic clock: a new, increasing timestamp on every call."""
    counter = itertools.count(1)

    def _now() -> str:
        return f"2026-01-01T00:00:{next(counter):02d}.000Z"

    return _now


@pytest.fixture
def blob_store():
    from cosimo.store import MemoryBlobStore
    return MemoryBlobStore()


@pytest.fixture
def identity():
    """Plaintext (encryption disabled) caller."""
    from cosimo.models import Identity
    return Identity(user_id="user-1")


@pytest.fixture
def encrypted_identity():
    """Caller whose blob is sealed with a passphrase."""
    from cosimo.models import Identity
    return Identity(user_id="user-2", encryption_enabled=True, passphrase="correct horse battery")


@pytest.fixture
def dispatcher(blob_store, clock):
    from cosimo.tools import ToolDispatcher
    return ToolDispatcher(blob_store, clock)


@pytest.fixture
def protocol(dispatcher):
    from cosimo.protocol import McpProtocol
    return McpProtocol(dispatcher)


@pytest.fixture
def empty():
    """A fresh canonical empty graph."""
    from cosimo.codec import empty_graph
    return empty_graph()


@pytest.fixture
def linked_graph(empty):
    """obj-1 linked to del-1 with relationship "obj-1:del-1"."""
    from cosimo.graph import add_deliverable, add_objective
    from cosimo.models import DeliverableCreate, ObjectiveCreate

    graph, _ = add_objective(empty, ObjectiveCreate(title="Get healthy", urgency=70), "t1")
    graph, _ = add_deliverable(
        graph,
        DeliverableCreate(title="Schedule checkup", objectiveId="obj-1", relationship="Baseline metrics"),
        "t2",
    )
    return graph


@pytest.fixture
def accounts():
    """Account store with one plaintext and one encrypted account."""
    from cosimo.crypto import hash_passphrase
    from cosimo.models import Account
    from cosimo.store import MemoryAccountStore

    return MemoryAccountStore([
        Account(user_id="plain", api_key="csk_plain"),
        Account(
            user_id="secret",
            api_key="csk_secret",
            encryption_enabled=True,
            passphrase_hash=hash_passphrase("open sesame"),
        ),
    ])


@pytest.fixture
def app(accounts, blob_store, clock):
    from cosimo.web import create_app
    return create_app(accounts, blob_store, clock=clock)


@pytest.fixture
def client(app):
    from starlette.testclient import TestClient
    with TestClient(app) as test_client:
        yield test_client
