"""Configure pytest fixtures and environment for RoomLedger tests."""

import pytest
from dotenv import load_dotenv

from roomledger.core.config import reset_settings
from roomledger.events.change_bus import reset_change_buses
from roomledger.services.notification_service import reset_notification_state


def pytest_sessionstart(session):
    """Load environment variables from .env."""
    load_dotenv()


@pytest.fixture(autouse=True)
def fresh_process_state():
    """Give every test its own buses, settings and notification state."""
    reset_change_buses()
    reset_settings()
    reset_notification_state()
    yield
    reset_change_buses()
    reset_settings()
    reset_notification_state()
