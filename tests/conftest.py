import os
import tempfile

# Settings are read once per process; point them at throwaway resources
# before anything from the package is imported.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="fulfillment-tests-")
os.environ["ENV_MODE"] = "development"
os.environ["DEBUG"] = "false"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/app.db"
os.environ["KITCHEN_API_TOKEN"] = "kitchen-device-token"
os.environ["FOH_STAFF_TOKENS"] = "alice:foh-alice-token,foh-shared-token"
os.environ["ORDER_MANAGEMENT_MODE"] = "foh"
os.environ["TAX_RATE"] = "0.08875"
os.environ.pop("PRINT_SERVICE_URL", None)

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import NullPool

from fulfillment.core.config import get_settings
from fulfillment.database import build_engine, init_db
from fulfillment.services.payment.mock import MockPaymentGateway
from fulfillment.workflow.service import WorkflowService


@pytest.fixture
async def engine(tmp_path):
    db_engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        poolclass=NullPool,
    )
    await init_db(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as db_session:
        yield db_session


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def service(session, settings):
    return WorkflowService(session, settings=settings)


@pytest.fixture
def gateway():
    return MockPaymentGateway()
