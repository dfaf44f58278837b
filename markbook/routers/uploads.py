"""
Router du téléversement des copies (session unique de l'enseignant connecté).
L'application tablette interroge GET /session pour afficher étape et progression.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response

from markbook.dependencies import (
    get_artifact_store,
    get_orchestrator,
    get_record_linker,
    get_roster_index,
)
from markbook.errors import StorageDeleteError, StorageReadError, UploadError
from markbook.schemas.student import StudentRecord
from markbook.schemas.upload import UploadCommandResult, UploadSessionState
from markbook.services import assessment_service

router = APIRouter(prefix="/api/v1", tags=["Téléversement des copies"])


@router.get("/uploads/session", response_model=UploadSessionState, summary="État de la session de téléversement")
def get_session(orchestrator=Depends(get_orchestrator)):
    return orchestrator.state


@router.post("/uploads", response_model=UploadSessionState, summary="Analyser une photo de copie")
async def upload_image(file: UploadFile = File(...), orchestrator=Depends(get_orchestrator)):
    """
    Valide, compresse et cherche le QR code de la photo.
    La session passe en `confirm` (élève détecté) ou `manual_select`.
    """
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Le fichier image est vide.")
    return await orchestrator.process_image(content)


@router.post("/uploads/confirm", response_model=UploadCommandResult, summary="Confirmer l'élève détecté")
async def confirm_assignment(orchestrator=Depends(get_orchestrator)):
    locator = await orchestrator.confirm_assignment()
    return UploadCommandResult(locator=locator, session=orchestrator.state)


@router.post("/uploads/select/{student_id}", response_model=UploadCommandResult,
             summary="Assigner la copie à un élève choisi")
async def select_student(
    student_id: uuid.UUID,
    orchestrator=Depends(get_orchestrator),
    index=Depends(get_roster_index),
):
    record = index.get(student_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Élève introuvable.")
    locator = await orchestrator.select_student(record)
    return UploadCommandResult(locator=locator, session=orchestrator.state)


@router.post("/uploads/cancel", response_model=UploadSessionState, summary="Annuler le téléversement")
async def cancel_upload(orchestrator=Depends(get_orchestrator)):
    orchestrator.cancel_upload()
    return orchestrator.state


@router.post("/uploads/retry", response_model=UploadSessionState, summary="Relancer le téléversement")
async def retry_upload(orchestrator=Depends(get_orchestrator)):
    return await orchestrator.retry_upload()


@router.get("/uploads/students", response_model=List[StudentRecord], summary="Élèves pour la sélection manuelle")
async def filtered_students(q: Optional[str] = None, orchestrator=Depends(get_orchestrator)):
    if q is not None:
        orchestrator.set_search_query(q)
    return orchestrator.filtered_students()


@router.get("/artifacts", summary="Télécharger une copie")
async def download_artifact(locator: str, store=Depends(get_artifact_store)):
    try:
        data = await store.get(locator)
    except StorageReadError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(content=data, media_type="image/jpeg")


@router.delete("/artifacts", status_code=204, summary="Supprimer une copie")
async def delete_artifact(
    locator: str,
    store=Depends(get_artifact_store),
    linker=Depends(get_record_linker),
    index=Depends(get_roster_index),
):
    """Retire la copie de la fiche de son élève puis supprime le fichier."""
    try:
        await assessment_service.delete_artifact(store, linker, index, locator)
    except StorageDeleteError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UploadError as e:
        raise HTTPException(status_code=409, detail=str(e))
