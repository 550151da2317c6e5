from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, create_engine
from sqlmodel.pool import StaticPool

from service_tracker.config import Settings
from service_tracker.context import AppContext
from service_tracker.domain.exceptions import TelegramError
from service_tracker.infrastructure.database.database import init_db
from service_tracker.infrastructure.database.models import StaffAllowlistEntry
from service_tracker.infrastructure.telegram import RequestCard, SentMessage
from service_tracker.main import create_app

ADMIN_CHAT_ID = "-1001234"
WEBHOOK_SECRET = "s3cret-token"


class FakeGateway:
    """Records every Telegram call instead of sending it."""

    def __init__(self):
        self.sent: list[tuple[str, RequestCard]] = []
        self.edited: list[tuple[str, int | None, RequestCard, str]] = []
        self.answered: list[tuple[str, str]] = []
        self.webhooks: list[tuple[str, str]] = []
        self.fail_send = False
        self.fail_edit = False
        self.next_message_id = 100
        self.closed = False

    async def send_approval_request(self, chat_id: str, card: RequestCard):
        if self.fail_send:
            raise TelegramError("sendMessage", 400, "Bad Request: chat not found")
        self.sent.append((chat_id, card))
        self.next_message_id += 1
        return SentMessage(message_id=self.next_message_id, chat_id=chat_id)

    async def edit_resolved_message(self, chat_id, message_id, card, status):
        if self.fail_edit:
            raise TelegramError("editMessageText", 400, "message is not modified")
        self.edited.append((chat_id, message_id, card, status))
        return True

    async def answer_callback(self, callback_id: str, text: str) -> None:
        self.answered.append((callback_id, text))

    async def set_webhook(self, url: str, secret_token: str) -> bool:
        self.webhooks.append((url, secret_token))
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(scope="function")
def now():
    return datetime(2026, 3, 14, 12, 0, 0)


@pytest.fixture(name="settings")
def settings_fixture():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        telegram_bot_token="123:abc",
        telegram_admin_chat_id=ADMIN_CHAT_ID,
        telegram_webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="gateway")
def gateway_fixture():
    return FakeGateway()


@pytest.fixture(name="client")
def client_fixture(settings, engine, gateway):
    """Test client around an explicit context (in-memory store, fake gateway)."""
    app = create_app(context=AppContext(settings, engine, gateway))
    return TestClient(app)


@pytest.fixture(name="staff")
def staff_fixture(session):
    entry = StaffAllowlistEntry(
        uid="staff-1", active=True, email="ana.silva@example.com", display_name="Ana"
    )
    session.add(entry)
    session.commit()
    return entry


@pytest.fixture(name="staff_headers")
def staff_headers_fixture(staff):
    return {
        "X-Auth-Uid": staff.uid,
        "X-Auth-Email": staff.email,
        "X-Auth-Name": "Ana Silva",
    }
