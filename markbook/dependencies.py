"""
Composants partagés de l'API (un seul registre et un seul orchestrateur par
processus, pour l'enseignant connecté). Remplaçables dans les tests via
app.dependency_overrides.
"""

from functools import lru_cache

from markbook.config import settings
from markbook.services.artifact_store import LocalArtifactStore
from markbook.services.code_detector import CodeDetector
from markbook.services.record_linker import RecordLinker
from markbook.services.roster_index import RosterIndex
from markbook.services.upload_orchestrator import UploadOrchestrator


@lru_cache
def get_roster_index() -> RosterIndex:
    return RosterIndex()


@lru_cache
def get_artifact_store() -> LocalArtifactStore:
    return LocalArtifactStore(config=settings)


@lru_cache
def get_record_linker() -> RecordLinker:
    return RecordLinker(get_roster_index())


@lru_cache
def get_orchestrator() -> UploadOrchestrator:
    return UploadOrchestrator(
        detector=CodeDetector(settings),
        index=get_roster_index(),
        store=get_artifact_store(),
        linker=get_record_linker(),
        teacher_id=settings.TEACHER_ID,
        config=settings,
    )
