"""
Configuration partagée pour tous les tests.
Chaque test dispose d'une base SQLite en mémoire et d'un répertoire de stockage
temporaire : aucune donnée réelle n'est touchée.
"""

import io
import os
import tempfile

# Avant tout import de markbook : la configuration est lue au chargement du module.
_TEST_DIR = tempfile.mkdtemp(prefix="markbook-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DIR}/markbook.db")
os.environ.setdefault("STORAGE_ROOT", os.path.join(_TEST_DIR, "storage"))

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from unittest.mock import AsyncMock, MagicMock

from markbook.config import Settings
from markbook.database import Base, get_db
from markbook.dependencies import get_artifact_store, get_orchestrator, get_record_linker, get_roster_index
from markbook.main import app
from markbook.models.student import Student
from markbook.services.artifact_store import LocalArtifactStore
from markbook.services.record_linker import RecordLinker
from markbook.services.roster_index import RosterIndex
from markbook.services.upload_orchestrator import UploadOrchestrator

TEACHER_ID = "default-teacher"


@pytest.fixture
def test_settings(tmp_path):
    """Configuration de test : pas de délai de remise à zéro, stockage temporaire."""
    return Settings(
        STORAGE_ROOT=str(tmp_path / "storage"),
        UPLOAD_RESET_DELAY_SECONDS=0,
        TEACHER_ID=TEACHER_ID,
    )


@pytest.fixture
def session_factory():
    """Base SQLite en mémoire partagée entre threads (les liaisons sont commitées hors boucle)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def index():
    return RosterIndex()


@pytest.fixture
def store(test_settings):
    return LocalArtifactStore(config=test_settings)


@pytest.fixture
def linker(index, session_factory):
    return RecordLinker(index, session_factory)


@pytest.fixture
def seed_student(session_factory):
    """Insère un élève en base et retourne son id."""
    def _seed(**kwargs):
        session = session_factory()
        try:
            student = Student(
                teacher_id=kwargs.get("teacher_id", TEACHER_ID),
                name=kwargs.get("name", "Alice Martin"),
                student_code=kwargs.get("student_code", "ST001"),
                scannable_code=kwargs.get("scannable_code", "STUDENT_ST001"),
                classroom=kwargs.get("classroom", "3A"),
                cohort=kwargs.get("cohort", "3"),
                artifact_count=0,
                is_active=kwargs.get("is_active", True),
            )
            session.add(student)
            session.commit()
            return student.id
        finally:
            session.close()
    return _seed


@pytest.fixture
def image_bytes():
    """Fabrique une photo PNG unie (décodable, sans QR code)."""
    def _make(size=(200, 150), color=(240, 240, 240), fmt="PNG"):
        buf = io.BytesIO()
        Image.new("RGB", size, color).save(buf, format=fmt)
        return buf.getvalue()
    return _make


@pytest.fixture
def detector():
    """Détecteur simulé : retourne None (aucun QR code) par défaut."""
    mock = MagicMock()
    mock.detect_async = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def orchestrator(detector, index, store, linker, test_settings):
    return UploadOrchestrator(
        detector=detector,
        index=index,
        store=store,
        linker=linker,
        teacher_id=TEACHER_ID,
        config=test_settings,
    )


@pytest.fixture
def client(session_factory, index, store, linker, orchestrator):
    """Client HTTP de test branché sur la base en mémoire et les composants de test."""
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_roster_index] = lambda: index
    app.dependency_overrides[get_artifact_store] = lambda: store
    app.dependency_overrides[get_record_linker] = lambda: linker
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
