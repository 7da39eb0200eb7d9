"""Test configuration and fixtures."""

import os
from datetime import datetime, timedelta
from uuid import uuid4

# Set test environment variables BEFORE importing the app
os.environ["MONGO_INITDB_ROOT_URI"] = "mongodb://localhost:27017"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["REFRESH_SECRET_KEY"] = "test-refresh-secret-key-for-testing-only"
os.environ["ALGORITHM"] = "HS256"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["MAIL_USERNAME"] = "mailer"
os.environ["MAIL_PASSWORD"] = "mailer-password"
os.environ["MAIL_FROM"] = "no-reply@example.com"
os.environ["MAIL_PORT"] = "587"
os.environ["MAIL_SERVER"] = "smtp.example.com"
os.environ["MAIL_FROM_NAME"] = "Learnpath"
os.environ["MAIL_SUPPRESS_SEND"] = "1"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["API_USAGE_GATE"] = "atomic"
os.environ["OPENAI_API_KEY"] = ""
os.environ.pop("LOG_FILE", None)

import httpx
import pytest
import pytest_asyncio
from beanie import init_beanie
from mongomock_motor import AsyncMongoMockClient

from main import app
from database.connection.db import DOCUMENT_MODELS
from database.models.api_usage import ApiUsage
from database.models.course import Course
from database.models.user import Role, User
from services.advisor import get_advisor
from services.auth import AuthService
from services.usage_ledger import UsageLedger, get_usage_ledger
from utils.auth import hash_password
from utils.dates import start_of_day

TEST_PASSWORD = "secret123"


class FakeClock:
    """Settable clock for the usage ledger."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeAdvisor:
    """Stands in for the OpenAI-backed advisor; records every call."""

    def __init__(self, reply: str = "{}"):
        self.reply = reply
        self.error = None
        self.calls = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        return self.reply


@pytest_asyncio.fixture
async def db():
    """A fresh in-memory MongoDB with all documents registered."""
    client = AsyncMongoMockClient()
    await init_beanie(database=client[f"test_{uuid4().hex}"], document_models=DOCUMENT_MODELS)
    yield client


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 18, 15, 30, 0))


@pytest.fixture
def ledger(db, clock):
    return UsageLedger(clock=clock)


@pytest.fixture
def advisor():
    return FakeAdvisor()


@pytest_asyncio.fixture
async def client(ledger, advisor):
    app.dependency_overrides[get_usage_ledger] = lambda: ledger
    app.dependency_overrides[get_advisor] = lambda: advisor
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Factory inserting a user of the given role; returns (user, auth headers)."""

    async def _make(role: Role = Role.STUDENT, username: str = None):
        username = username or f"{role.value}-{uuid4().hex[:8]}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            password=hash_password(TEST_PASSWORD),
            role=role,
        )
        await user.insert()
        tokens = await AuthService().issue_session(user)
        return user, {"Authorization": f"Bearer {tokens.token}"}

    return _make


@pytest.fixture
def make_course(db):
    async def _make(instructor: User, title: str = "Intro to Python", **overrides):
        course = Course(
            title=title,
            description=overrides.pop("description", f"{title} description"),
            content=overrides.pop("content", f"{title} content"),
            instructor=instructor.id,
            **overrides,
        )
        await course.insert()
        return course

    return _make


@pytest.fixture
def seed_usage(db, clock):
    """Insert a usage record `days_ago` days before the clock's current day."""

    async def _seed(days_ago: int, requests_today: int = 0, **overrides):
        day = start_of_day(clock.now) - timedelta(days=days_ago)
        usage = ApiUsage(
            date=day,
            requests_today=requests_today,
            total_requests=overrides.pop("total_requests", requests_today),
            last_reset=day,
            created_at=day,
            updated_at=day,
            **overrides,
        )
        await usage.insert()
        return usage

    return _seed
