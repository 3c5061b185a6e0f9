import os
from typing import Dict, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ADMIN_ACCESS_TOKEN", "admin-test-token")
os.environ.setdefault("SYSTEM_ACCESS_TOKEN", "system-test-token")
os.environ.setdefault("SIGNATURE_PROVIDER", "mock")
os.environ.setdefault("SIGNATURE_POLL_ASYNC", "false")

from certia.main import app  # noqa: E402
from certia import db as db_module  # noqa: E402
from certia.db import get_session  # noqa: E402
from certia import storage as storage_module  # noqa: E402
from certia import signature as signature_module  # noqa: E402
from certia import rendering as rendering_module  # noqa: E402
from certia import notifications as notifications_module  # noqa: E402
from certia import workflow as workflow_module  # noqa: E402
from certia.auth import issue_profile_token  # noqa: E402
from certia.models import Profile  # noqa: E402
from certia.routers import profiles as profiles_router  # noqa: E402
from certia.routers import submissions as submissions_router  # noqa: E402
from certia.routers import templates as templates_router  # noqa: E402

# every module that imported storage helpers by name
STORAGE_USERS = (storage_module, signature_module, rendering_module, profiles_router, submissions_router, templates_router)


class MissingObject(FileNotFoundError):
    pass


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    path = tmp_path_factory.mktemp("db") / "certia.db"
    return create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session(test_engine, setup_db):
    with Session(test_engine) as s:
        yield s


@pytest.fixture
def mock_storage(monkeypatch) -> Dict[Tuple[str, str], bytes]:
    store: Dict[Tuple[str, str], bytes] = {}

    def fake_put_bytes(bucket: str, key: str, data: bytes, content_type: str = "application/octet-stream"):
        store[(bucket, key)] = bytes(data)

    def fake_get_bytes(bucket: str, key: str) -> bytes:
        if (bucket, key) not in store:
            raise MissingObject(f"{bucket}/{key}")
        return store[(bucket, key)]

    def fake_delete_object(bucket: str, key: str):
        store.pop((bucket, key), None)

    def fake_delete_objects(bucket: str, keys):
        for key in keys:
            store.pop((bucket, key), None)

    fakes = {
        "put_bytes": fake_put_bytes,
        "get_bytes": fake_get_bytes,
        "delete_object": fake_delete_object,
        "delete_objects": fake_delete_objects,
    }
    for module in STORAGE_USERS:
        for name, fake in fakes.items():
            if hasattr(module, name):
                monkeypatch.setattr(module, name, fake)
    return store


@pytest.fixture
def sent_emails(monkeypatch):
    messages = []

    def fake_send_email(to, subject, body, html_body=None):
        messages.append({"to": to, "subject": subject, "text": body, "html": html_body})

    monkeypatch.setattr(notifications_module, "send_email", fake_send_email)
    return messages


@pytest.fixture(autouse=True)
def published_changes(monkeypatch):
    changes = []
    monkeypatch.setattr(workflow_module, "publish_change", lambda event, sub: changes.append((event, sub.id, sub.status)))
    return changes


@pytest.fixture
def make_profile(session):
    def _make(role: str, username: str, full_name: str | None = None, email: str | None = None) -> Profile:
        profile = Profile(
            username=username,
            email=email or f"{username}@example.com",
            full_name=full_name,
            role=role,
        )
        session.add(profile)
        session.flush()
        profile.access_token = issue_profile_token(profile)
        session.commit()
        session.refresh(profile)
        return profile
    return _make


@pytest.fixture
def client(test_engine, setup_db, mock_storage, sent_emails):
    db_module.engine = test_engine

    def override_session():
        with Session(test_engine) as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
