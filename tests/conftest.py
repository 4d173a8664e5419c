"""Pytest configuration and fixtures."""

import os
import time
import uuid

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DISPATCH_SIGNING_KEY"] = "test-signing-key"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ.pop("DISPATCH_NEXT_SIGNING_KEY", None)
os.environ.pop("SENDGRID_API_KEY", None)

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import brandscan.models  # noqa: F401
from brandscan.config import settings
from brandscan.database import Base, get_db
from brandscan.dependencies import get_dispatcher, get_notifier, get_provider
from brandscan.jobs.pipeline import PipelineDriver
from brandscan.jobs.runner import TaskRunner
from brandscan.main import app
from brandscan.models.records import Brand, User
from brandscan.services.dispatcher import SIGNATURE_HEADER, SIGNATURE_ISSUER, DispatchError, body_hash, encode_body

VALID_RESULT = {
    "overall_score": 72.5,
    "weighted_score": 64.0,
    "success_rate": 100,
    "total_response_time": 1850,
    "aggregated_sentiment": {
        "overall": "positive",
        "confidence": 80,
        "distribution": {"positive": 70, "neutral": 20, "negative": 10, "strongly_positive": 0},
    },
    "prompt_results": [
        {
            "prompt_id": "p-1",
            "prompt_text": "Best project tools for small teams?",
            "score": 72.5,
            "weighted_score": 64.0,
            "mention_position": 2,
            "response": "Acme is a popular choice...",
            "response_time": 1850,
            "status": "success",
        }
    ],
    "metadata": {"version": "1.0", "total_prompts": 1, "successful_prompts": 1},
    "status": "success",
}


class FakeDispatcher:
    """Records published messages instead of calling the relay."""

    def __init__(self):
        self.messages = []
        self.resumes = []
        self.fail = False

    def publish_pair(self, run_id, current_pair, remaining_pairs):
        if self.fail:
            raise DispatchError("relay unavailable")
        self.messages.append(
            {
                "run_id": run_id,
                "current_pair": dict(current_pair),
                "remaining_pairs": [dict(p) for p in remaining_pairs],
            }
        )
        return f"msg-{len(self.messages)}"

    def publish_resume(self, run_id):
        if self.fail:
            raise DispatchError("relay unavailable")
        self.resumes.append(run_id)
        return f"resume-{len(self.resumes)}"


class FakeProvider:
    """Returns canned results; ``responses``/``errors`` override per (model, stage)."""

    def __init__(self):
        self.calls = []
        self.responses = {}
        self.errors = {}

    def analyze(self, brand, model, stage):
        self.calls.append((model, stage))
        if (model, stage) in self.errors:
            raise self.errors[(model, stage)]
        return self.responses.get((model, stage), dict(VALID_RESULT))


class FakeNotifier:
    def __init__(self):
        self.sent = []

    def send(self, address, subject, body):
        self.sent.append({"address": address, "subject": subject, "body": body})


@pytest.fixture(scope="function")
def test_db():
    """Create a test database for each test."""
    # One shared in-memory connection, usable from the TestClient threadpool
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    yield db

    db.close()
    engine.dispose()


@pytest.fixture
def brand(test_db):
    """Seed the brand and its owner."""
    brand = Brand(brand_id="brand-1", name="Acme", owner_id="user-1", category="Project tools")
    test_db.add(brand)
    test_db.add(User(user_id="user-1", email="owner@example.com", name="Owner"))
    test_db.commit()
    return brand


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def pipeline(test_db, dispatcher, notifier):
    return PipelineDriver(test_db, dispatcher, notifier)


@pytest.fixture
def runner(test_db, provider, pipeline):
    return TaskRunner(test_db, provider, pipeline)


@pytest.fixture
def deliver(runner, dispatcher):
    """Deliver queued messages to the runner, the way the relay would."""

    def _deliver(count=None):
        outcomes = []
        while dispatcher.messages and (count is None or len(outcomes) < count):
            message = dispatcher.messages.pop(0)
            outcomes.append(
                runner.run(message["run_id"], message["current_pair"], message["remaining_pairs"])
            )
        return outcomes

    return _deliver


@pytest.fixture
def client(test_db, dispatcher, provider, notifier):
    """API client wired to the test database and fakes."""

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_notifier] = lambda: notifier

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


def relay_token(raw_body, url, key="test-signing-key", **claims):
    """Signature token shaped like the relay's ``Upstash-Signature``."""
    now = int(time.time())
    payload = {
        "iss": SIGNATURE_ISSUER,
        "sub": url,
        "iat": now,
        "nbf": now,
        "exp": now + 300,
        "jti": uuid.uuid4().hex,
        "body": body_hash(raw_body),
    }
    payload.update(claims)
    return jwt.encode(payload, key, algorithm="HS256")


@pytest.fixture
def signed_post(client):
    """POST a JSON body to a webhook route with a relay signature."""

    def _post(path, body, key="test-signing-key", raw=None, **claims):
        signed = encode_body(body)
        url = f"{settings.BASE_URL.rstrip('/')}{path}"
        return client.post(
            path,
            content=signed if raw is None else raw,
            headers={
                "Content-Type": "application/json",
                SIGNATURE_HEADER: relay_token(signed, url, key, **claims),
            },
        )

    return _post
