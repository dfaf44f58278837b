"""
Service métier pour le registre des élèves d'un enseignant.

Toute modification est commitée en base avant que l'index en mémoire ne soit
reconstruit (écriture puis cache, jamais l'inverse).
"""

import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from markbook.config import Settings, settings as default_settings
from markbook.models.student import Student
from markbook.schemas.student import StudentCreate, StudentRecord, StudentStatistics, StudentUpdate
from markbook.services.qr_codes import generate_scannable_code
from markbook.services.roster_index import RosterIndex

logger = logging.getLogger(__name__)


def _roster_query(teacher_id: str):
    return (
        select(Student)
        .options(selectinload(Student.artifacts))
        .where(Student.teacher_id == teacher_id, Student.is_active.is_(True))
        .order_by(Student.name)
    )


def load_roster(db: Session, teacher_id: str, index: RosterIndex) -> List[StudentRecord]:
    """Charge les élèves actifs de l'enseignant, triés par nom, et reconstruit l'index."""
    students = db.execute(_roster_query(teacher_id)).scalars().all()
    records = [StudentRecord.from_model(s) for s in students]
    index.rebuild(records)
    logger.info("Registre chargé pour l'enseignant %s : %d élèves", teacher_id, len(records))
    return records


def _student_code_taken(db: Session, teacher_id: str, student_code: str) -> bool:
    existing = db.execute(
        select(Student.id).where(
            Student.teacher_id == teacher_id,
            Student.student_code == student_code,
        ).limit(1)
    ).scalar()
    return existing is not None


def _new_student(teacher_id: str, data: StudentCreate) -> Student:
    return Student(
        teacher_id=teacher_id,
        name=data.name,
        student_code=data.student_code,
        scannable_code=data.scannable_code or generate_scannable_code(data.student_code),
        classroom=data.classroom,
        cohort=data.cohort,
        academic_year=data.academic_year,
        email=data.email,
        parent_email=data.parent_email,
        notes=data.notes,
        artifact_count=0,
        last_artifact_at=None,
        is_active=True,
    )


def create_student(db: Session, teacher_id: str, data: StudentCreate, index: RosterIndex) -> StudentRecord:
    """
    Inscrit un élève avec une liste de copies vide.
    Lève une ValueError si le code élève existe déjà pour cet enseignant.
    """
    if _student_code_taken(db, teacher_id, data.student_code):
        raise ValueError(f"Un élève avec le code '{data.student_code}' existe déjà.")

    student = _new_student(teacher_id, data)
    db.add(student)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValueError("Ce QR code est déjà attribué à un autre élève.")
    db.refresh(student)
    record = StudentRecord.from_model(student)

    load_roster(db, teacher_id, index)
    logger.info("Élève %s inscrit (%s)", record.id, record.student_code)
    return record


def create_students(
    db: Session, teacher_id: str, rows: List[StudentCreate], index: RosterIndex
) -> List[StudentRecord]:
    """
    Inscrit plusieurs élèves en une seule transaction.
    Lève une ValueError (rien n'est inséré) si un code élève est en double.
    """
    codes = [row.student_code for row in rows]
    duplicates = {c for c in codes if codes.count(c) > 1}
    if duplicates:
        raise ValueError(f"Codes élèves en double dans le lot : {', '.join(sorted(duplicates))}")

    existing = set(db.execute(
        select(Student.student_code).where(
            Student.teacher_id == teacher_id,
            Student.student_code.in_(codes),
        )
    ).scalars().all())
    if existing:
        raise ValueError(f"Élèves déjà inscrits : {', '.join(sorted(existing))}")

    students = [_new_student(teacher_id, row) for row in rows]
    db.add_all(students)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValueError("Un des QR codes du lot est déjà attribué.")

    for student in students:
        db.refresh(student)
    records = [StudentRecord.from_model(s) for s in students]

    load_roster(db, teacher_id, index)
    logger.info("%d élèves inscrits pour l'enseignant %s", len(records), teacher_id)
    return records


def get_student(db: Session, student_id: uuid.UUID) -> Optional[StudentRecord]:
    """Retourne la fiche d'un élève (actif ou non), ou None si inexistant."""
    student = db.get(Student, student_id)
    if student is None:
        return None
    return StudentRecord.from_model(student)


def update_student(
    db: Session, student_id: uuid.UUID, data: StudentUpdate, index: RosterIndex
) -> Optional[StudentRecord]:
    """Met à jour les champs fournis. Les copies et leur compteur ne sont pas concernés."""
    student = db.get(Student, student_id)
    if student is None:
        return None

    update_data = data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        setattr(student, field, value)
    student.revision = Student.revision + 1

    db.commit()
    db.refresh(student)
    record = StudentRecord.from_model(student)

    load_roster(db, student.teacher_id, index)
    return record


def _set_active(db: Session, student_id: uuid.UUID, active: bool, index: RosterIndex) -> Optional[StudentRecord]:
    student = db.get(Student, student_id)
    if student is None:
        return None

    student.is_active = active
    student.revision = Student.revision + 1
    db.commit()
    db.refresh(student)
    record = StudentRecord.from_model(student)

    load_roster(db, student.teacher_id, index)
    return record


def deactivate_student(db: Session, student_id: uuid.UUID, index: RosterIndex) -> Optional[StudentRecord]:
    """
    Suppression logique : l'élève disparaît du registre mais sa fiche et ses
    copies sont conservées. Retourne None si l'élève est introuvable.
    """
    record = _set_active(db, student_id, False, index)
    if record is not None:
        logger.info("Élève %s désactivé", student_id)
    return record


def reactivate_student(db: Session, student_id: uuid.UUID, index: RosterIndex) -> Optional[StudentRecord]:
    """Réintègre un élève désactivé dans le registre."""
    return _set_active(db, student_id, True, index)


def get_students_by_classroom(db: Session, teacher_id: str, classroom: str) -> List[StudentRecord]:
    """Élèves actifs d'une classe, triés par nom."""
    students = db.execute(
        _roster_query(teacher_id).where(Student.classroom == classroom)
    ).scalars().all()
    return [StudentRecord.from_model(s) for s in students]


def get_student_statistics(
    db: Session, teacher_id: str, config: Settings = default_settings
) -> StudentStatistics:
    """Statistiques du registre : volume de copies, activité récente, classes et niveaux."""
    students = db.execute(_roster_query(teacher_id)).scalars().all()

    total_students = len(students)
    total_assessments = sum(s.artifact_count or 0 for s in students)
    with_assessments = sum(1 for s in students if (s.artifact_count or 0) > 0)

    threshold = datetime.now(timezone.utc) - timedelta(days=config.RECENT_ACTIVITY_DAYS)
    recent = 0
    for s in students:
        last = s.last_artifact_at
        if last is None:
            continue
        # SQLite restitue des dates naïves (stockées en UTC)
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        if last >= threshold:
            recent += 1

    return StudentStatistics(
        total_students=total_students,
        students_with_assessments=with_assessments,
        total_assessments=total_assessments,
        recent_activity_count=recent,
        classrooms=sorted({s.classroom for s in students}),
        cohorts=sorted({s.cohort for s in students}),
        assessment_rate=with_assessments / total_students if total_students else 0.0,
        average_assessments_per_student=total_assessments / total_students if total_students else 0.0,
    )
