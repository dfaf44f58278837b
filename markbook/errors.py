"""
Erreurs typées du flux de téléversement des copies.

Chaque erreur porte un message destiné à l'enseignant (affiché dans la session
de téléversement) ; le détail technique reste dans les logs.
"""

from typing import List, Optional


class UploadError(Exception):
    """Base de toutes les erreurs du pipeline de téléversement."""

    default_message = "Une erreur inattendue est survenue."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def user_message(self) -> str:
        return str(self)


class ImageValidationError(UploadError):
    """Image illisible, trop lourde ou aux dimensions hors limites."""

    default_message = "Validation de l'image échouée."

    def __init__(self, issues: List[str]):
        self.issues = list(issues)
        super().__init__(f"{self.default_message} {', '.join(self.issues)}".strip())


class ImageTooLargeError(UploadError):
    default_message = "Impossible de compresser l'image sous la taille maximale autorisée."


class DetectionError(UploadError):
    """Échec du détecteur lui-même (différent de « aucun QR code trouvé »)."""

    default_message = "La détection du QR code a échoué."


class StorageWriteError(UploadError):
    default_message = "Échec de l'enregistrement de la copie."


class StorageReadError(UploadError):
    default_message = "Impossible de lire la copie demandée."


class StorageDeleteError(UploadError):
    default_message = "Impossible de supprimer la copie."


class RecordNotFoundError(UploadError):
    default_message = "Élève introuvable."


class RecordWriteError(UploadError):
    default_message = "Impossible de mettre à jour la fiche de l'élève."


class MissingStudentIdError(UploadError):
    default_message = "L'identifiant de l'élève est manquant."


class SessionCancelled(Exception):
    """
    La session pour laquelle une étape a été lancée n'est plus la session active
    (annulation ou nouveau téléversement). Jamais affichée à l'enseignant.
    """
