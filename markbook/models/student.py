"""
Modèles SQLAlchemy pour les élèves et les copies d'évaluation qui leur sont liées.
"""

import uuid
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import relationship

from markbook.database import Base


class Student(Base):
    __tablename__ = "students"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    teacher_id = Column(String(128), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    student_code = Column(String(50), nullable=False)       # Ex: "ST001"
    scannable_code = Column(String(200), unique=True, nullable=False)  # Contenu du QR code
    classroom = Column(String(50), nullable=False)          # Ex: "3A"
    cohort = Column(String(50), nullable=False)             # Niveau, ex: "3"
    academic_year = Column(String(20), nullable=True)       # Ex: "2024-2025"
    email = Column(String(255), nullable=True)
    parent_email = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    # Suivi des copies : modifié uniquement par RecordLinker
    artifact_count = Column(Integer, nullable=False, default=0)
    last_artifact_at = Column(DateTime(timezone=True), nullable=True)
    revision = Column(Integer, nullable=False, default=0)   # incrémenté en SQL à chaque écriture de la fiche

    is_active = Column(Boolean, nullable=False, default=True)  # False = suppression logique
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    artifacts = relationship(
        "StudentArtifact",
        order_by="StudentArtifact.id",
        cascade="all, delete-orphan",
    )


class StudentArtifact(Base):
    """Liaison ordonnée élève ↔ copie stockée (ordre d'insertion = ordre de téléversement)."""
    __tablename__ = "student_artifacts"
    __table_args__ = (UniqueConstraint("student_id", "locator", name="uq_student_artifact_locator"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    locator = Column(String(500), nullable=False)
    added_at = Column(DateTime(timezone=True), nullable=False)
