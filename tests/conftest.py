"""Pytest configuration and shared fixtures.

Provides common fixtures for:
- Temporary database paths
- Mock environment variables
- Sample 3DCart orders
- Database and client fixtures
"""

import pytest
from pathlib import Path
import tempfile
from unittest.mock import AsyncMock

from tests.fixtures.cart_fixtures import make_cart_order


NETSUITE_BASE_URL = "https://1234567-sb1.suitetalk.api.netsuite.com"
CART_API_URL = "https://apirest.3dcart.com/3dCartWebAPI/v2"


# =============================================================================
# TEMPORARY PATHS
# =============================================================================

@pytest.fixture
def temp_db_path():
    """Create a temporary database path for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test_sync.db"


@pytest.fixture
def temp_log_path():
    """Create a temporary log file path for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.log"


# =============================================================================
# ENVIRONMENT VARIABLES
# =============================================================================

@pytest.fixture
def mock_env_vars(monkeypatch):
    """Set up mock environment variables for testing.

    This provides a complete set of environment variables needed
    for the Settings class to initialize successfully. Request and
    inter-order delays are zeroed so tests run fast.
    """
    monkeypatch.setenv("CART_SECURE_URL", "https://test-store.3dcartstores.com")
    monkeypatch.setenv("CART_PRIVATE_KEY", "test_private_key")
    monkeypatch.setenv("CART_TOKEN", "test_cart_token")
    monkeypatch.setenv("NETSUITE_ACCOUNT_ID", "1234567_SB1")
    monkeypatch.setenv("NETSUITE_CONSUMER_KEY", "test_consumer_key")
    monkeypatch.setenv("NETSUITE_CONSUMER_SECRET", "test_consumer_secret")
    monkeypatch.setenv("NETSUITE_TOKEN_ID", "test_token_id")
    monkeypatch.setenv("NETSUITE_TOKEN_SECRET", "test_token_secret")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("CART_RATE_LIMIT_DELAY", "0")
    monkeypatch.setenv("NETSUITE_RATE_LIMIT_DELAY", "0")
    monkeypatch.setenv("BULK_ORDER_DELAY", "0")
    monkeypatch.setenv("MAX_RETRIES", "1")


@pytest.fixture
def settings(mock_env_vars):
    """Create settings from the mock environment."""
    from ordersync.config import Settings
    return Settings()


# =============================================================================
# SAMPLE MODELS
# =============================================================================

@pytest.fixture
def sample_order():
    """Create a sample 3DCart order for testing."""
    from ordersync.models import CartOrder
    return CartOrder.model_validate(make_cart_order())


@pytest.fixture
def sample_customer():
    """Create a sample NetSuite person customer."""
    from ordersync.models import NetSuiteCustomer
    return NetSuiteCustomer(
        id=5001,
        first_name="Jane",
        last_name="Doe",
        email="jane.doe@example.com",
        is_person=True,
    )


# =============================================================================
# DATABASE AND CLIENT FIXTURES
# =============================================================================

@pytest.fixture
def database(temp_db_path):
    """Create a real database instance for testing."""
    from ordersync.database import Database
    return Database(temp_db_path)


@pytest.fixture
def mock_netsuite_client(settings):
    """Create a mock NetSuite client."""
    from ordersync.netsuite_client import NetSuiteClient

    client = AsyncMock(spec=NetSuiteClient)
    client.settings = settings
    return client


@pytest.fixture
def mock_cart_client(settings):
    """Create a mock 3DCart client."""
    from ordersync.cart_client import CartClient

    client = AsyncMock(spec=CartClient)
    client.settings = settings
    return client
