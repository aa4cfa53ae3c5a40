"""
Shared pytest fixtures for the Docketwise sync tests.

Provides:
- Mock cursor / connection / get_connection for the db stores
- Reference maps and sample Docketwise payloads
- In-memory stores and a fake Docketwise API (see tests/fakes.py)
"""
import sys
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from models import ReferenceMaps  # noqa: E402
from fakes import (  # noqa: E402
    FakeCache,
    FakeDocketwiseAPI,
    FakeMatterStore,
    FakeNotificationStore,
    FakeProgressStore,
    FakeReferenceStore,
    RecordingNotifier,
)


@pytest.fixture
def user_id():
    """Fixture providing a test user ID."""
    return "user-1"


@pytest.fixture
def mock_cursor():
    """
    Fixture providing a mock cursor with database methods.

    Supports:
    - execute(sql, params)
    - fetchone()
    - fetchall()
    - Works as context manager
    """
    cursor = MagicMock()
    cursor.fetchone = MagicMock(return_value=None)
    cursor.fetchall = MagicMock(return_value=[])
    cursor.execute = MagicMock(return_value=None)
    cursor.rowcount = 0
    cursor.__enter__ = MagicMock(return_value=cursor)
    cursor.__exit__ = MagicMock(return_value=None)
    return cursor


@pytest.fixture
def mock_connection(mock_cursor):
    """
    Fixture providing a mock PostgreSQL connection.

    Returns a mock connection that:
    - Creates a mock cursor via cursor() method
    - Supports commit() and rollback() calls
    """
    conn = MagicMock()
    conn.cursor = MagicMock(return_value=mock_cursor)
    conn.commit = MagicMock()
    conn.rollback = MagicMock()
    conn.autocommit = False
    return conn


@pytest.fixture
def mock_get_connection(mock_connection):
    """
    Factory fixture that patches get_connection in a store module.

    Usage:
        mock_get_connection("db.matters")
        MatterStore().get("user-1", 1)

    Records the keyword arguments of every call in `.calls`.
    """
    patchers = []
    calls = []

    @contextmanager
    def get_connection_mock(autocommit=False, statement_timeout_ms=None):
        calls.append({"autocommit": autocommit, "statement_timeout_ms": statement_timeout_ms})
        mock_connection.autocommit = autocommit
        yield mock_connection

    def _patch(module: str):
        patcher = patch(f"{module}.get_connection", side_effect=get_connection_mock)
        patcher.start()
        patchers.append(patcher)
        return calls

    yield _patch
    for patcher in patchers:
        patcher.stop()


@pytest.fixture
def assert_sql_contains():
    """
    Helper fixture for asserting SQL content in mocked execute calls.

    Usage:
        cursor.execute("SELECT * FROM foo WHERE id = %s", (1,))
        assert_sql_contains(cursor, "SELECT", "FROM foo")
    """
    def _assert(cursor, *keywords):
        """Assert that all keywords appear in any execute call."""
        assert cursor.execute.called, "execute() was not called"
        for call in cursor.execute.call_args_list:
            sql = call[0][0]  # First positional arg is SQL
            if all(kw in sql for kw in keywords):
                return True
        raise AssertionError(
            f"SQL containing all of {keywords} not found in execute calls: "
            f"{[str(c) for c in cursor.execute.call_args_list]}"
        )
    return _assert


# ============================================================================
# Domain fixtures
# ============================================================================

@pytest.fixture
def reference_maps():
    return ReferenceMaps(
        users={10: "Jane Doe", 11: "John Roe", 12: "Ana Lima"},
        clients={500: "Maria Garcia", 501: "Acme Corp"},
        types={20: "I-130", 21: "N-400"},
        statuses={30: "Case Evaluation", 31: "Document Collection", 32: "RFE Received"},
    )


@pytest.fixture
def sample_matter_payload():
    """Detail-style Docketwise matter payload."""
    return {
        "id": 101,
        "title": "Garcia I-130",
        "description": "Spousal petition",
        "client_id": 500,
        "matter_type_id": 20,
        "workflow_stage_id": 30,
        "status": {"id": 7, "name": "Not Filed"},
        "user_ids": [10, 11],
        "attorney_id": 10,
        "created_at": "2026-01-05T15:00:00Z",
        "updated_at": "2026-02-01T15:00:00Z",
        "archived": False,
        "discarded_at": None,
    }


@pytest.fixture
def matter_store():
    return FakeMatterStore()


@pytest.fixture
def reference_store():
    return FakeReferenceStore()


@pytest.fixture
def progress_store():
    return FakeProgressStore()


@pytest.fixture
def fake_cache(reference_maps):
    return FakeCache(reference_maps)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def docketwise_api():
    return FakeDocketwiseAPI()


@pytest.fixture
def sync_dispatcher():
    """Dispatcher that runs submitted work inline."""
    from dispatcher import TaskDispatcher
    return TaskDispatcher(name="test", synchronous=True)


@pytest.fixture
def notification_store():
    return FakeNotificationStore()
