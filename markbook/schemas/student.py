"""
Schémas Pydantic pour les élèves du registre.
"""

import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, EmailStr, field_validator


class StudentCreate(BaseModel):
    """Schéma d'inscription d'un élève (POST /students)."""
    name: str
    student_code: str
    classroom: str
    cohort: str
    scannable_code: Optional[str] = None  # généré à partir de student_code si absent
    academic_year: Optional[str] = None
    email: Optional[EmailStr] = None
    parent_email: Optional[EmailStr] = None
    notes: Optional[str] = None

    @field_validator("name", "student_code", "classroom", "cohort")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le champ ne peut pas être vide.")
        return v.strip()

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v


class StudentUpdate(BaseModel):
    """
    Schéma de mise à jour d'un élève (PUT /students/{id}).
    Les copies et leur compteur ne sont jamais modifiables par cette voie.
    """
    name: Optional[str] = None
    classroom: Optional[str] = None
    cohort: Optional[str] = None
    academic_year: Optional[str] = None
    email: Optional[EmailStr] = None
    parent_email: Optional[EmailStr] = None
    notes: Optional[str] = None

    @field_validator("name", "classroom", "cohort")
    @classmethod
    def not_empty(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Le champ ne peut pas être vide.")
        return v.strip() if v else v


class StudentRecord(BaseModel):
    """
    Instantané immuable d'une fiche élève, tel que servi par l'index du registre.

    Invariants : artifact_count == len(artifact_locators) et last_artifact_at
    est renseigné si et seulement si artifact_count > 0.
    `revision` croît à chaque écriture commitée : l'index ne remplace jamais
    une fiche par une version plus ancienne.
    """
    id: Optional[uuid.UUID] = None
    teacher_id: str
    name: str
    student_code: str
    scannable_code: str
    classroom: str
    cohort: str
    academic_year: Optional[str] = None
    email: Optional[str] = None
    parent_email: Optional[str] = None
    notes: Optional[str] = None
    artifact_locators: Tuple[str, ...] = ()
    artifact_count: int = 0
    last_artifact_at: Optional[datetime] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    revision: int = 0

    model_config = {"frozen": True}

    @classmethod
    def from_model(cls, student) -> "StudentRecord":
        """Construit l'instantané depuis un modèle SQLAlchemy Student (session ouverte)."""
        return cls(
            id=student.id,
            teacher_id=student.teacher_id,
            name=student.name,
            student_code=student.student_code,
            scannable_code=student.scannable_code,
            classroom=student.classroom,
            cohort=student.cohort,
            academic_year=student.academic_year,
            email=student.email,
            parent_email=student.parent_email,
            notes=student.notes,
            artifact_locators=tuple(a.locator for a in student.artifacts),
            artifact_count=student.artifact_count or 0,
            last_artifact_at=student.last_artifact_at,
            is_active=bool(student.is_active),
            created_at=student.created_at,
            revision=student.revision or 0,
        )


class StudentStatistics(BaseModel):
    """Statistiques du registre d'un enseignant."""
    total_students: int
    students_with_assessments: int
    total_assessments: int
    recent_activity_count: int
    classrooms: List[str]
    cohorts: List[str]
    assessment_rate: float
    average_assessments_per_student: float
