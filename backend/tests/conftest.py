"""Pytest fixtures: fresh SQLite database and in-memory object store per test."""
import io
import uuid
import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from cafe_directory.database import Base, enable_sqlite_savepoints, get_db
from cafe_directory.main import app
from cafe_directory.services.format_encoder import get_format_encoder
from cafe_directory.storage import InMemoryObjectStore, get_object_store

# Import all models so they register with Base.metadata
from cafe_directory.models.user import User, UserRole
from cafe_directory.models.cafe import Cafe, CafePhoto  # noqa: F401
from cafe_directory.models.favorite import UserFavorite  # noqa: F401
from cafe_directory.models.submission import ModerationEvent, ModerationSubmission  # noqa: F401

SQLITE_URL = "sqlite:///./test.db"


@pytest.fixture(scope="function")
def db_engine():
    """Create a fresh SQLite engine (with SAVEPOINT support) for each test."""
    engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
    enable_sqlite_savepoints(engine)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(db_engine):
    """Session for arranging and asserting.

    Plain pysqlite only opens a transaction for DML, so reads here never hold
    a lock and always see what request sessions committed.
    """
    engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture(scope="function")
def store():
    return InMemoryObjectStore(public_base_url="http://storage.test")


@pytest.fixture(scope="function")
def client(session_factory, store):
    """FastAPI TestClient with the database, object store and encoder overridden."""

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_object_store] = lambda: store
    app.dependency_overrides[get_format_encoder] = lambda: None
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def create_test_user(db, name: str = "Test User", role: UserRole = UserRole.user, email: str | None = None) -> User:
    """Helper: insert a user row and return it."""
    user = User(id=str(uuid.uuid4()), display_name=name, email=email, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_test_cafe(db, name: str = "Test Cafe", description: str | None = None) -> Cafe:
    """Helper: insert a cafe row directly and return it."""
    cafe = Cafe(
        id=str(uuid.uuid4()),
        name=name,
        address="Nevsky 1",
        description=description,
        lat=59.93,
        lng=30.34,
        amenities=[],
    )
    db.add(cafe)
    db.commit()
    db.refresh(cafe)
    return cafe


def auth(user: User) -> dict:
    return {"X-User-ID": user.id}


def image_bytes(width: int = 64, height: int = 48, fmt: str = "JPEG", alpha: int | None = None, **save_args) -> bytes:
    """Render a gradient image in-process; ``alpha`` adds a constant alpha channel."""
    gradient = Image.linear_gradient("L").resize((width, height))
    img = Image.merge("RGB", (gradient, Image.new("L", (width, height), 90), Image.new("L", (width, height), 40)))
    if alpha is not None:
        img.putalpha(alpha)
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_args)
    return buf.getvalue()


def stage_photo(store: InMemoryObjectStore, user: User, name: str = "1700000000_a.jpg", data: bytes | None = None,
                content_type: str = "image/jpeg") -> str:
    """Put an object under the user's pending prefix and return its key."""
    key = f"pending/submissions/{user.id}/{name}"
    store.put(key, content_type, data if data is not None else image_bytes())
    return key
