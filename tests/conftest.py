"""
Shared fixtures for the schedule analyzer tests.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import app as app_module
from helpers import parse_schedule


SCENARIO_A = 'R1(X); W1(X); R2(X); W2(X); C1; C2'
SCENARIO_B = 'R1(X); W2(X); R2(Y); W1(Y)'
SCENARIO_C = 'W1(X); R2(X); C1'
SCENARIO_D = 'W1(X); R2(X); A1'
SCENARIO_E = 'W1(A); W2(B); R1(B); R2(A)'


@pytest.fixture
def parse():
    """Parse a schedule, failing the test on any dropped token"""
    def _parse(schedule):
        operations, warnings = parse_schedule(schedule)
        assert warnings == []
        return operations
    return _parse


@pytest.fixture
def flask_app():
    app_module.app.config.update(TESTING=True, ASSISTANT_URL=None, ASSISTANT_API_KEY=None)
    app_module.lock_manager = None
    app_module.current_schedule = None
    yield app_module.app
    app_module.lock_manager = None
    app_module.current_schedule = None


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()
