import pytest
import pytest_asyncio
from unittest.mock import patch
from tortoise import Tortoise

from erp_sync.core.db import MODELS_MODULES
from erp_sync.testing.testing_mocks import FakeErpClient


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database per test."""
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": MODELS_MODULES}, use_tz=True)
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest.fixture
def erp():
    return FakeErpClient()


@pytest.fixture(autouse=True)
def erp_document_defaults():
    """ERP master data normally provided through the environment."""
    with patch("erp_sync.sync.documents.DEFAULT_CUSTOMER", "C-WEB-0001"), \
         patch("erp_sync.sync.documents.TRANSFER_ACCOUNT", "10120001"), \
         patch("erp_sync.consumers.order_consumer.TRANSFER_ACCOUNT", "10120001"):
        yield
