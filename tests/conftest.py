"""
Pytest configuration and fixtures.

Real gateway adapters are used throughout; their HTTP clients talk to
in-process fakes of Daraja and Paystack through ``httpx.MockTransport``.
"""
import json
from typing import Any, AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from fakes import PAYSTACK_SECRET, FakeDaraja, FakePaystack, RecordingNotifier, mpesa_callback_body
from waterpoint.core.config import Settings
from waterpoint.db import close_db, create_engine, create_session_factory, init_db
from waterpoint.gateways.mpesa import MpesaGateway
from waterpoint.gateways.paystack import PaystackGateway
from waterpoint.main import create_app
from waterpoint.models import PaymentVariant
from waterpoint.services import ServiceContainer, build_services


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        app_name="waterpoint-test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'waterpoint.db'}",
        otp_cache_enabled=False,
        mpesa_consumer_key="consumer-key",
        mpesa_consumer_secret="consumer-secret",
        mpesa_passkey="passkey",
        paystack_secret_key=PAYSTACK_SECRET,
        sms_api_key="at-key",
        sms_retry_delay_seconds=0,
        log_level="DEBUG",
    )


@pytest_asyncio.fixture
async def session_factory(test_settings: Settings) -> AsyncGenerator[Any, Any]:
    """Fresh database with all tables."""
    engine = create_engine(test_settings)
    await init_db(engine)
    yield create_session_factory(engine)
    await close_db(engine)


@pytest.fixture
def daraja() -> FakeDaraja:
    return FakeDaraja()


@pytest.fixture
def paystack() -> FakePaystack:
    return FakePaystack()


@pytest.fixture
def notifier(test_settings: Settings) -> RecordingNotifier:
    return RecordingNotifier(test_settings)


@pytest_asyncio.fixture
async def services(
    test_settings: Settings,
    session_factory,
    daraja: FakeDaraja,
    paystack: FakePaystack,
    notifier: RecordingNotifier,
) -> AsyncGenerator[ServiceContainer, Any]:
    gateways = {
        PaymentVariant.MOBILE_PUSH: MpesaGateway(
            test_settings,
            client=httpx.AsyncClient(
                base_url=test_settings.mpesa_base_url,
                transport=httpx.MockTransport(daraja.handle),
            ),
        ),
        PaymentVariant.HOSTED_CHECKOUT: PaystackGateway(
            test_settings,
            client=httpx.AsyncClient(
                base_url=test_settings.paystack_base_url,
                transport=httpx.MockTransport(paystack.handle),
            ),
        ),
    }
    container = build_services(
        test_settings, session_factory, gateways=gateways, notifier=notifier
    )
    yield container
    await container.aclose()


@pytest_asyncio.fixture
async def client(
    test_settings: Settings, services: ServiceContainer
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    app = create_app(test_settings)
    app.state.services = services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def paid_reference(services: ServiceContainer, daraja: FakeDaraja) -> str:
    """A completed 10-liter M-Pesa transaction (credential auto-issued)."""
    result = await services.ledger.initiate(PaymentVariant.MOBILE_PUSH, 50, "0712345678")
    await services.ledger.handle_callback(
        PaymentVariant.MOBILE_PUSH,
        json.dumps(mpesa_callback_body(result["provider_handle"])).encode(),
    )
    return result["transaction_reference"]
