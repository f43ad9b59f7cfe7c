"""Shared test fixtures for OneFlow tests."""

import sys
from pathlib import Path

import pytest

# Ensure the repo root (pkg/, flow_server.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from pkg.oneflow.store import TaskStore
from pkg.oneflow.service import FlowService
from pkg.oneflow.schema import Division
from pkg.oneflow.projects import new_project


ROSTER = {
    "gesty": Division.GRAPHIC,
    "wisnu": Division.GRAPHIC,
    "reza": Division.GRAPHIC,
    "imam": Division.MOTION,
    "aldi": Division.MOTION,
    "ezza": Division.MUSIC,
}

TEAMS = {
    "visual": Division.GRAPHIC,
    "animators": Division.MOTION,
    "sound": Division.MUSIC,
}


@pytest.fixture
def store(tmp_path):
    """A fresh store holding two projects, "expo" and "gala"."""
    store = TaskStore(str(tmp_path / "oneflow.db"))
    store.save_project(new_project("expo", "Jakarta Expo", "Project", "2026-11-02", "2026-11-05"))
    store.save_project(new_project("gala", "Year-end Gala", "Pitching", "2026-12-12", "2026-12-12"))
    return store


@pytest.fixture
def service(store):
    return FlowService(store)


@pytest.fixture
def roster_service(store):
    return FlowService(store, roster=ROSTER, teams=TEAMS)
