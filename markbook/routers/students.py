"""
Router pour le registre des élèves de l'enseignant connecté.
Listage / recherche, inscription, mise à jour, désactivation,
étiquette QR code, espace occupé et suppression des copies.
"""

import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from markbook.config import settings
from markbook.database import get_db
from markbook.dependencies import get_artifact_store, get_record_linker, get_roster_index
from markbook.schemas.student import StudentCreate, StudentRecord, StudentStatistics, StudentUpdate
from markbook.schemas.upload import BatchDeleteReport, StorageUsage
from markbook.services import assessment_service, student_service
from markbook.services.qr_codes import generate_qr_image

router = APIRouter(prefix="/api/v1/students", tags=["Élèves"])


def _get_record_or_404(db: Session, student_id: uuid.UUID) -> StudentRecord:
    record = student_service.get_student(db, student_id)
    if record is None or record.teacher_id != settings.TEACHER_ID:
        raise HTTPException(status_code=404, detail="Élève introuvable.")
    return record


@router.get("", response_model=List[StudentRecord], summary="Lister / rechercher les élèves")
def list_students(q: str = "", db: Session = Depends(get_db), index=Depends(get_roster_index)):
    """
    Recharge le registre puis retourne les élèves actifs triés par nom.
    `q` filtre sur le nom, le code élève ou la classe (insensible à la casse).
    """
    student_service.load_roster(db, settings.TEACHER_ID, index)
    return index.search(q, scope=settings.TEACHER_ID)


@router.get("/statistics", response_model=StudentStatistics, summary="Statistiques du registre")
def get_statistics(db: Session = Depends(get_db)):
    return student_service.get_student_statistics(db, settings.TEACHER_ID)


@router.post("", response_model=StudentRecord, status_code=201, summary="Inscrire un élève")
def create_student(data: StudentCreate, db: Session = Depends(get_db), index=Depends(get_roster_index)):
    """Inscrit un élève. Le contenu du QR code est généré si non fourni."""
    try:
        return student_service.create_student(db, settings.TEACHER_ID, data, index)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put("/{student_id}", response_model=StudentRecord, summary="Modifier un élève")
def update_student(
    student_id: uuid.UUID,
    data: StudentUpdate,
    db: Session = Depends(get_db),
    index=Depends(get_roster_index),
):
    """Met à jour les champs fournis. Les champs absents ne sont pas modifiés."""
    _get_record_or_404(db, student_id)
    return student_service.update_student(db, student_id, data, index)


@router.delete("/{student_id}", status_code=204, summary="Désactiver un élève")
def delete_student(student_id: uuid.UUID, db: Session = Depends(get_db), index=Depends(get_roster_index)):
    """Suppression logique : la fiche et les copies sont conservées."""
    _get_record_or_404(db, student_id)
    student_service.deactivate_student(db, student_id, index)


@router.get("/{student_id}/qr-code", summary="Étiquette QR code de l'élève (PNG)")
def get_qr_code(student_id: uuid.UUID, db: Session = Depends(get_db)):
    record = _get_record_or_404(db, student_id)
    return Response(content=generate_qr_image(record.scannable_code), media_type="image/png")


@router.get("/{student_id}/storage-usage", response_model=StorageUsage, summary="Espace occupé par les copies")
async def get_storage_usage(
    student_id: uuid.UUID,
    db: Session = Depends(get_db),
    store=Depends(get_artifact_store),
):
    record = _get_record_or_404(db, student_id)
    return await assessment_service.get_storage_usage(store, record)


@router.delete("/{student_id}/artifacts", response_model=BatchDeleteReport, summary="Supprimer toutes les copies")
async def delete_all_artifacts(
    student_id: uuid.UUID,
    db: Session = Depends(get_db),
    store=Depends(get_artifact_store),
    linker=Depends(get_record_linker),
):
    """Supprime chaque copie de l'élève ; les échecs sont rapportés sans interrompre le lot."""
    record = _get_record_or_404(db, student_id)
    return await assessment_service.delete_all_artifacts(store, linker, record)
