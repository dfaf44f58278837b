"""
Service des copies d'évaluation : téléversement + liaison à la fiche élève,
opérations par lot, suppression et espace occupé.

Flux de téléversement :
  1. Vérifier que l'élève a un identifiant
  2. Écrire le JPEG dans le stockage (bande de progression STORAGE_PROGRESS_*)
  3. Abandonner si la session a été annulée entre-temps (la copie écrite est supprimée)
  4. Lier la copie à la fiche élève (commit puis mise à jour de l'index)
  5. En cas d'échec de la liaison : suppression de la copie orpheline (au mieux),
     l'erreur de liaison d'origine est toujours propagée
"""

import asyncio
import logging
import time
import uuid
from typing import Callable, List, Optional

from PIL import Image

from markbook.config import Settings, settings as default_settings
from markbook.errors import (
    MissingStudentIdError,
    SessionCancelled,
    StorageReadError,
    UploadError,
)
from markbook.schemas.student import StudentRecord
from markbook.schemas.upload import BatchDeleteReport, BatchUploadReport, StorageUsage
from markbook.services.artifact_store import ArtifactStore
from markbook.services.image_processing import load_image, prepare_image
from markbook.services.record_linker import RecordLinker
from markbook.services.roster_index import RosterIndex

logger = logging.getLogger(__name__)


def build_destination(student_id: uuid.UUID, config: Settings = default_settings) -> str:
    """Chemin de stockage unique d'une copie (format : <prefix>/<id>/<id>_<ts>_<8 hex>.jpg)."""
    file_name = f"{student_id}_{int(time.time())}_{uuid.uuid4().hex[:8]}.jpg"
    return f"{config.ASSESSMENTS_PREFIX}/{student_id}/{file_name}"


async def upload_and_link(
    store: ArtifactStore,
    linker: RecordLinker,
    payload: bytes,
    student: StudentRecord,
    config: Settings = default_settings,
    on_progress: Optional[Callable[[float], None]] = None,
    should_continue: Optional[Callable[[], bool]] = None,
) -> str:
    """
    Téléverse le JPEG puis le lie à la fiche de l'élève. Retourne le localisateur.

    Lève MissingStudentIdError avant toute écriture si la fiche n'a pas d'id,
    les erreurs Storage*/Record* sinon, et SessionCancelled si should_continue()
    devient faux après l'écriture.
    """
    if student.id is None:
        raise MissingStudentIdError()

    start, end = config.STORAGE_PROGRESS_START, config.STORAGE_PROGRESS_END

    def report(value: float) -> None:
        if on_progress:
            on_progress(value)

    report(start)
    locator = await store.put(
        payload,
        build_destination(student.id, config),
        on_progress=lambda fraction: report(start + fraction * (end - start)),
    )
    report(end)

    if should_continue is not None and not should_continue():
        logger.info("Session annulée après écriture, copie %s abandonnée", locator)
        await _discard_orphan(store, locator)
        raise SessionCancelled()

    try:
        await asyncio.to_thread(linker.add_artifact, student.id, locator)
    except Exception:
        await _discard_orphan(store, locator)
        raise

    report(1.0)
    return locator


async def _discard_orphan(store: ArtifactStore, locator: str) -> None:
    """Suppression compensatoire d'une copie non liée. Un échec est seulement logué."""
    try:
        await store.delete(locator)
        logger.info("Copie orpheline supprimée : %s", locator)
    except Exception as exc:
        logger.warning("Suppression de la copie orpheline %s impossible : %s", locator, exc)


async def upload_multiple(
    store: ArtifactStore,
    linker: RecordLinker,
    images: List[bytes],
    student: StudentRecord,
    config: Settings = default_settings,
) -> BatchUploadReport:
    """
    Téléverse plusieurs photos pour un même élève.
    Une image en échec est logguée et ajoutée au rapport, le lot continue.
    """
    if student.id is None:
        raise MissingStudentIdError()

    uploaded: List[str] = []
    errors: List[str] = []

    for position, data in enumerate(images, start=1):
        try:
            _, payload = await asyncio.to_thread(prepare_image, data, config)
            locator = await upload_and_link(store, linker, payload, student, config)
            uploaded.append(locator)
        except UploadError as exc:
            error_msg = f"Image {position} : {exc.user_message}"
            errors.append(error_msg)
            logger.error("Téléversement multiple élève %s : %s", student.id, error_msg)

    logger.info(
        "Téléversement multiple élève %s : %d/%d images liées",
        student.id, len(uploaded), len(images),
    )
    return BatchUploadReport(student_id=student.id, total=len(images), uploaded=uploaded, errors=errors)


async def delete_artifact(
    store: ArtifactStore,
    linker: RecordLinker,
    index: RosterIndex,
    locator: str,
) -> Optional[StudentRecord]:
    """
    Supprime une copie : retrait de la fiche de son propriétaire puis suppression
    du fichier. Retourne la fiche mise à jour (None si aucun élève ne la référençait).
    """
    owner = index.find_by_locator(locator)
    record = None
    if owner is not None:
        record = await asyncio.to_thread(linker.remove_artifact, owner.id, locator)

    await store.delete(locator)
    return record


async def delete_all_artifacts(
    store: ArtifactStore,
    linker: RecordLinker,
    student: StudentRecord,
) -> BatchDeleteReport:
    """Supprime toutes les copies d'un élève ; un échec n'interrompt pas le lot."""
    if student.id is None:
        raise MissingStudentIdError()

    deleted: List[str] = []
    errors: List[str] = []

    for locator in student.artifact_locators:
        try:
            await asyncio.to_thread(linker.remove_artifact, student.id, locator)
            await store.delete(locator)
            deleted.append(locator)
        except UploadError as exc:
            errors.append(f"{locator} : {exc.user_message}")
            logger.error("Suppression de %s impossible : %s", locator, exc)

    logger.info("Élève %s : %d copie(s) supprimée(s), %d échec(s)", student.id, len(deleted), len(errors))
    return BatchDeleteReport(student_id=student.id, deleted=deleted, errors=errors)


async def get_storage_usage(store: ArtifactStore, student: StudentRecord) -> StorageUsage:
    """Calcule l'espace occupé par les copies d'un élève (copies illisibles ignorées)."""
    total_size = 0
    for locator in student.artifact_locators:
        try:
            total_size += await store.size(locator)
        except StorageReadError as exc:
            logger.warning("Taille de la copie %s indisponible : %s", locator, exc)

    return StorageUsage(image_count=len(student.artifact_locators), total_size_bytes=total_size)


async def load_artifact_image(store: ArtifactStore, locator: str) -> Image.Image:
    """Télécharge une copie et la décode. Lève StorageReadError si les données sont illisibles."""
    data = await store.get(locator)
    try:
        return await asyncio.to_thread(load_image, data)
    except UploadError as exc:
        raise StorageReadError("Données d'image invalides.") from exc
