import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'backend')))

os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from essaylab import models  # noqa: F401  registers tables on Base
from essaylab.db import Base, get_db
from essaylab.main import app
from essaylab.models import EssayPrompt, EssayTopic
from essaylab.routers.auth import User, get_current_user


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login_as():
    """Replace the current-user capability with a fixed user."""
    def _login(username='alice', role='student'):
        app.dependency_overrides[get_current_user] = lambda: User(username=username, role=role)
        return username

    yield _login
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture
def prompt(db):
    topic = EssayTopic(name='Environment', created_by='admin')
    db.add(topic)
    db.flush()
    row = EssayPrompt(topic_id=topic.id, title='Should cars be banned from city centres?', created_by='admin')
    db.add(row)
    db.commit()
    return {'topic_id': topic.id, 'prompt_id': row.id}
