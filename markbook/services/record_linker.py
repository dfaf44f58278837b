"""
Liaison transactionnelle des copies stockées aux fiches élèves.

Chaque opération ouvre sa propre session, commite, puis seulement met à jour
l'index en mémoire : une liaison non commitée n'est jamais visible.

Compteur, date de dernière copie et révision sont calculés par la base dans
l'UPDATE (artifact_count = artifact_count + 1, ...) et non depuis la lecture
faite plus tôt dans la session : deux liaisons concurrentes sur le même élève
ne perdent aucune incrémentation.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from markbook.database import SessionLocal
from markbook.errors import RecordNotFoundError, RecordWriteError
from markbook.models.student import Student, StudentArtifact
from markbook.schemas.student import StudentRecord
from markbook.services.roster_index import RosterIndex

logger = logging.getLogger(__name__)


class RecordLinker:
    def __init__(self, index: RosterIndex, session_factory: Callable[[], Session] = SessionLocal):
        self.index = index
        self.session_factory = session_factory

    def add_artifact(self, student_id: uuid.UUID, locator: str) -> StudentRecord:
        """
        Ajoute la copie à la fiche de l'élève (si absente), incrémente le compteur
        et met à jour la date de dernière copie, puis commite.

        Lève RecordNotFoundError si l'élève n'existe pas ou a été désactivé,
        RecordWriteError si le commit échoue (aucune modification appliquée).
        """
        db = self.session_factory()
        try:
            student = self._get_student(db, student_id)
            if not student.is_active:
                raise RecordNotFoundError(f"Élève {student_id} introuvable ou désactivé.")

            if locator in {a.locator for a in student.artifacts}:
                logger.debug("Copie %s déjà liée à l'élève %s", locator, student_id)
                return StudentRecord.from_model(student)

            now = datetime.now(timezone.utc)
            student.artifacts.append(StudentArtifact(locator=locator, added_at=now))
            student.artifact_count = Student.artifact_count + 1
            student.last_artifact_at = now
            student.revision = Student.revision + 1

            record = self._commit(db, student)
        finally:
            db.close()

        self.index.apply(record)
        logger.info("Copie %s liée à l'élève %s (%d au total)", locator, student_id, record.artifact_count)
        return record

    def remove_artifact(self, student_id: uuid.UUID, locator: str) -> StudentRecord:
        """
        Retire la copie de la fiche de l'élève. Sans effet si elle n'y figure pas.
        Le compteur décrémenté ne descend jamais sous zéro ; la date de dernière
        copie est effacée quand la dernière copie est retirée.
        """
        db = self.session_factory()
        try:
            student = self._get_student(db, student_id)

            link = next((a for a in student.artifacts if a.locator == locator), None)
            if link is None:
                logger.debug("Copie %s absente de la fiche %s, rien à retirer", locator, student_id)
                return StudentRecord.from_model(student)

            student.artifacts.remove(link)
            # les expressions du SET lisent les valeurs d'avant l'UPDATE
            student.artifact_count = case(
                (Student.artifact_count > 0, Student.artifact_count - 1),
                else_=0,
            )
            student.last_artifact_at = case(
                (Student.artifact_count > 1, Student.last_artifact_at),
                else_=None,
            )
            student.revision = Student.revision + 1

            record = self._commit(db, student)
        finally:
            db.close()

        self.index.apply(record)
        logger.info("Copie %s retirée de l'élève %s (%d restantes)", locator, student_id, record.artifact_count)
        return record

    def _get_student(self, db: Session, student_id: Optional[uuid.UUID]) -> Student:
        try:
            student = db.get(Student, student_id)
        except SQLAlchemyError as exc:
            raise RecordWriteError(f"Lecture de la fiche élève impossible : {exc}") from exc
        if student is None:
            raise RecordNotFoundError(f"Élève {student_id} introuvable.")
        return student

    def _commit(self, db: Session, student: Student) -> StudentRecord:
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Commit de la fiche élève échoué : %s", exc)
            raise RecordWriteError(f"Impossible de mettre à jour la fiche de l'élève : {exc}") from exc
        db.refresh(student)
        return StudentRecord.from_model(student)
