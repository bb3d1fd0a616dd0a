import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import models  # noqa: F401
from auth import create_token
from database import Base, create_db_engine, get_db
from main import app


@pytest.fixture
def engine(tmp_path):
    # File-backed so worker threads in the concurrency tests share one database
    eng = create_db_engine(f"sqlite:///{tmp_path / 'streaks.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user_id() -> int:
    return 1


@pytest.fixture
def other_user_id() -> int:
    return 2


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user_id) -> dict:
    return {"Authorization": f"Bearer {create_token({'user_id': user_id})}"}
