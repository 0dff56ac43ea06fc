import os
import tempfile
from pathlib import Path

# main creates its tables at import time; point it away from the working tree.
_IMPORT_DIR = Path(tempfile.mkdtemp(prefix="shortdrop-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_IMPORT_DIR / 'import.db'}"
os.environ["UPLOAD_DIR"] = str(_IMPORT_DIR / "uploads")
os.environ["PUBLIC_BASE_URL"] = "http://testserver"

import database  # noqa: E402
import main  # noqa: E402
import models  # noqa: E402
import pytest  # noqa: E402
from config import Settings, get_settings  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

MAX_BYTES = 1024


@pytest.fixture
def settings(tmp_path):
    return Settings(
        public_base_url="http://testserver",
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        upload_dir=tmp_path / "uploads",
        max_upload_bytes=MAX_BYTES,
    )


@pytest.fixture
def engine(settings):
    engine = database.make_engine(settings.database_url)
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory, settings):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    main.app.dependency_overrides[database.get_db] = override_get_db
    main.app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    def _login(username="alice", password="secret1"):
        return client.post("/admin/login", data={"username": username, "password": password})
    return _login


@pytest.fixture
def stored_files(settings):
    def _stored_files():
        if not settings.upload_dir.exists():
            return []
        return sorted(p.name for p in settings.upload_dir.iterdir())
    return _stored_files
