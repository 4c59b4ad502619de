import asyncio
import base64
import inspect
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_ENV", "dev")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")


def ensure_event_loop() -> asyncio.AbstractEventLoop:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    if loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop


ensure_event_loop()

import anyio  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from kit_delivery.domain.cep_zones import db_models as cep_zone_db_models  # noqa: E402,F401
from kit_delivery.infra.db import Base, get_db_session  # noqa: E402
from kit_delivery.main import app  # noqa: E402
from kit_delivery.settings import settings  # noqa: E402

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "admin-secret"
VIEWER_USERNAME = "viewer"
VIEWER_PASSWORD = "viewer-secret"


def basic_auth_header(username: str, password: str) -> dict[str, str]:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def test_engine():
    db_path = Path("test.db")
    if db_path.exists():
        db_path.unlink()
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test.db",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def restore_admin_settings():
    original_owner_username = settings.owner_basic_username
    original_owner_password = settings.owner_basic_password
    original_username = settings.admin_basic_username
    original_password = settings.admin_basic_password
    original_viewer_username = settings.viewer_basic_username
    original_viewer_password = settings.viewer_basic_password
    original_admin_basic_auth_enabled = settings.admin_basic_auth_enabled
    original_app_env = settings.app_env
    original_testing = settings.testing
    original_metrics_token = settings.metrics_token
    original_trust_proxy_headers = settings.trust_proxy_headers
    original_trusted_proxy_ips = settings.trusted_proxy_ips_raw
    original_trusted_proxy_cidrs = settings.trusted_proxy_cidrs_raw
    original_whatsapp_number = settings.support_whatsapp_number
    yield
    settings.owner_basic_username = original_owner_username
    settings.owner_basic_password = original_owner_password
    settings.admin_basic_username = original_username
    settings.admin_basic_password = original_password
    settings.viewer_basic_username = original_viewer_username
    settings.viewer_basic_password = original_viewer_password
    settings.admin_basic_auth_enabled = original_admin_basic_auth_enabled
    settings.app_env = original_app_env
    settings.testing = original_testing
    settings.metrics_token = original_metrics_token
    settings.trust_proxy_headers = original_trust_proxy_headers
    settings.trusted_proxy_ips_raw = original_trusted_proxy_ips
    settings.trusted_proxy_cidrs_raw = original_trusted_proxy_cidrs
    settings.support_whatsapp_number = original_whatsapp_number


@pytest.fixture(autouse=True)
def enable_test_mode():
    settings.testing = True
    settings.app_env = "dev"
    settings.admin_basic_auth_enabled = True
    settings.admin_basic_username = ADMIN_USERNAME
    settings.admin_basic_password = ADMIN_PASSWORD
    settings.viewer_basic_username = VIEWER_USERNAME
    settings.viewer_basic_password = VIEWER_PASSWORD
    yield


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    rate_limiter = getattr(app.state, "rate_limiter", None)
    reset = getattr(rate_limiter, "reset", None) if rate_limiter else None
    if reset:
        if inspect.iscoroutinefunction(reset):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                asyncio.run(reset())
            else:
                anyio.from_thread.run(reset)
        else:
            reset()
    yield


@pytest.fixture()
def client(async_session_maker):
    ensure_event_loop()

    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory


@pytest.fixture()
def client_no_raise(async_session_maker):
    """Test client that returns HTTP responses instead of raising server exceptions."""

    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return basic_auth_header(ADMIN_USERNAME, ADMIN_PASSWORD)


@pytest.fixture()
def viewer_headers() -> dict[str, str]:
    return basic_auth_header(VIEWER_USERNAME, VIEWER_PASSWORD)
