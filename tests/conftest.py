"""Pytest configuration and fixtures."""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from workflow_guard.config import reset_config
from workflow_guard.core.auto_healer import AutoHealer
from workflow_guard.core.pipeline import ValidationPipeline
from workflow_guard.core.security_scanner import SecurityScanner
from workflow_guard.storage.database import create_database_engine, create_session_factory, create_tables
from workflow_guard.storage.sql import SqlVersionBackend, SqlAuditBackend


def make_node(node_id, node_type="ACTION", block_type="NOTIFICATION", config=None, position=None, label=None):
    """Build a raw provider-style node mapping."""
    node = {
        "id": node_id,
        "blockType": block_type,
        "nodeType": node_type,
        "label": label if label is not None else f"{block_type.title()} {node_id}",
        "config": config if config is not None else {"message": "Workflow finished"},
        "position": position if position is not None else {"x": 0, "y": 0},
    }
    if node_id is None:
        del node["id"]
    return node


def make_trigger(node_id="trigger-1", **kwargs):
    kwargs.setdefault("config", {"url": "https://api.openai.com/hooks/incoming"})
    return make_node(node_id, node_type="TRIGGER", block_type="WEBHOOK", **kwargs)


def make_edge(edge_id, source, target):
    return {"id": edge_id, "source": source, "target": target}


class FakeClock:
    """Deterministic clock for time-dependent stores."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def clean_config():
    """Each test starts from an unloaded global configuration."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def valid_graph():
    """Trigger wired to one notification action."""
    return {
        "nodes": [
            make_trigger(position={"x": 0, "y": 0}),
            make_node("action-1", label="Notify team", position={"x": 250, "y": 0}),
        ],
        "edges": [make_edge("edge-1", "trigger-1", "action-1")],
    }


@pytest.fixture
def disconnected_graph():
    """One trigger and one action with no edge between them."""
    return {
        "nodes": [
            make_trigger(),
            make_node("action-1", label="Notify team", position={"x": 250, "y": 0}),
        ],
        "edges": [],
    }


@pytest.fixture
def sequential_ids():
    counter = itertools.count(1)
    return lambda: str(next(counter))


@pytest.fixture
def healer(sequential_ids):
    return AutoHealer(id_factory=sequential_ids)


@pytest.fixture
def scanner():
    return SecurityScanner()


@pytest.fixture
def pipeline(healer):
    return ValidationPipeline(healer=healer)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sqlite_engine():
    """In-memory SQLite database with all tables created."""
    engine = create_database_engine("sqlite:///:memory:")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return create_session_factory(sqlite_engine)


@pytest.fixture
def sql_version_backend(session_factory):
    return SqlVersionBackend(session_factory)


@pytest.fixture
def sql_audit_backend(session_factory):
    return SqlAuditBackend(session_factory)
