"""
Schémas Pydantic pour le téléversement des copies d'évaluation.
"""

import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, computed_field

from markbook.schemas.student import StudentRecord


class UploadStage(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    SCANNING = "scanning"              # sous-phase de UPLOADING : recherche du QR code
    CONFIRM = "confirm"                # élève détecté, en attente de confirmation
    MANUAL_SELECT = "manual_select"    # pas de QR exploitable, choix manuel


class UploadSessionState(BaseModel):
    """
    Instantané de la session de téléversement, publié à chaque changement.
    La couche de présentation l'interroge ou s'y abonne.
    """
    stage: UploadStage = UploadStage.IDLE
    progress: float = 0.0
    status: str = ""
    detected_student: Optional[StudentRecord] = None
    search_query: str = ""
    is_active: bool = False
    has_image: bool = False
    error_message: Optional[str] = None
    last_locator: Optional[str] = None

    model_config = {"frozen": True}


class ValidationResult(BaseModel):
    """Résultat de la validation d'une image avant téléversement."""
    is_valid: bool
    issues: List[str]


class StorageUsage(BaseModel):
    """Espace occupé par les copies d'un élève."""
    image_count: int
    total_size_bytes: int

    @computed_field
    @property
    def total_size_mb(self) -> float:
        return self.total_size_bytes / (1024 * 1024)

    @computed_field
    @property
    def formatted_size(self) -> str:
        if self.total_size_mb < 1.0:
            return f"{self.total_size_bytes / 1024:.1f} KB"
        return f"{self.total_size_mb:.1f} MB"


class BatchUploadReport(BaseModel):
    """Rapport d'un téléversement multiple pour un élève."""
    student_id: uuid.UUID
    total: int
    uploaded: List[str]
    errors: List[str]


class BatchDeleteReport(BaseModel):
    """Rapport de suppression de toutes les copies d'un élève."""
    student_id: uuid.UUID
    deleted: List[str]
    errors: List[str]


class UploadCommandResult(BaseModel):
    """Résultat d'une commande de téléversement final (confirmation ou sélection)."""
    locator: Optional[str]
    session: UploadSessionState
