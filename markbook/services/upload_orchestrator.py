"""
Orchestrateur du téléversement d'une copie d'évaluation.

Machine à états :
  IDLE → UPLOADING → (SCANNING) → CONFIRM | MANUAL_SELECT → UPLOADING (final) → IDLE

  1. process_image : validation + compression, puis détection du QR code
  2. QR détecté et élève trouvé dans l'index → CONFIRM
     pas de QR, QR inconnu ou échec du détecteur → MANUAL_SELECT
  3. confirm_assignment / select_student → écriture du fichier puis liaison à la fiche
  4. succès → la commande rend le localisateur, remise à zéro planifiée après
     UPLOAD_RESET_DELAY_SECONDS
     échec → IDLE avec le message d'erreur conservé et l'image gardée pour retry_upload
  5. cancel_upload → IDLE immédiatement ; les résultats tardifs sont ignorés

Règle d'écriture unique : l'état de session n'est modifié que depuis la boucle
d'événements de l'orchestrateur. Chaque étape porte le numéro de génération de
la session qui l'a lancée ; un résultat arrivant pour une session remplacée ou
annulée est ignoré.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from PIL import Image

from markbook.config import Settings, settings as default_settings
from markbook.errors import DetectionError, MissingStudentIdError, SessionCancelled, UploadError
from markbook.schemas.student import StudentRecord
from markbook.schemas.upload import UploadSessionState, UploadStage
from markbook.services.artifact_store import ArtifactStore
from markbook.services.assessment_service import upload_and_link
from markbook.services.code_detector import CodeDetector
from markbook.services.image_processing import prepare_image
from markbook.services.record_linker import RecordLinker
from markbook.services.roster_index import RosterIndex

logger = logging.getLogger(__name__)

SessionListener = Callable[[UploadSessionState], None]


@dataclass
class UploadSession:
    """État mutable d'un téléversement en cours, propriété exclusive de l'orchestrateur."""
    stage: UploadStage = UploadStage.IDLE
    progress: float = 0.0
    status: str = ""
    image_data: Optional[bytes] = None
    payload: Optional[bytes] = None          # JPEG compressé prêt à téléverser
    detected_student: Optional[StudentRecord] = None
    search_query: str = ""
    is_active: bool = False
    error_message: Optional[str] = None
    last_locator: Optional[str] = None


class UploadOrchestrator:
    def __init__(
        self,
        detector: CodeDetector,
        index: RosterIndex,
        store: ArtifactStore,
        linker: RecordLinker,
        teacher_id: Optional[str] = None,
        config: Settings = default_settings,
    ):
        self.detector = detector
        self.index = index
        self.store = store
        self.linker = linker
        self.teacher_id = teacher_id
        self.config = config

        self._session = UploadSession()
        self._generation = 0
        self._listeners: List[SessionListener] = []
        self._reset_task: Optional[asyncio.Task] = None

    # --- Session observable ---

    @property
    def state(self) -> UploadSessionState:
        s = self._session
        return UploadSessionState(
            stage=s.stage,
            progress=s.progress,
            status=s.status,
            detected_student=s.detected_student,
            search_query=s.search_query,
            is_active=s.is_active,
            has_image=s.image_data is not None,
            error_message=s.error_message,
            last_locator=s.last_locator,
        )

    def subscribe(self, listener: SessionListener) -> None:
        """Le listener reçoit un instantané de la session après chaque changement."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self) -> None:
        state = self.state
        for listener in list(self._listeners):
            listener(state)

    # --- Commandes ---

    async def process_image(self, image_data: Optional[bytes]) -> UploadSessionState:
        """
        Démarre un téléversement pour l'image choisie. Toute session précédente est
        remplacée. None (sélection annulée par l'enseignant) est ignoré sans erreur.
        """
        if image_data is None:
            return self.state

        generation = self._start_session(image_data)
        try:
            await self._scan(generation, image_data)
        except SessionCancelled:
            logger.debug("Session %d remplacée pendant l'analyse, résultat ignoré", generation)
        except UploadError as exc:
            self._fail(generation, exc)
        except Exception as exc:
            logger.exception("Erreur inattendue pendant l'analyse de l'image")
            self._fail(generation, UploadError(f"Une erreur inattendue est survenue : {exc}"))
        return self.state

    async def confirm_assignment(self) -> Optional[str]:
        """Téléverse l'image vers l'élève détecté. Retourne le localisateur, ou None en cas d'échec."""
        s = self._session
        if s.stage != UploadStage.CONFIRM or s.detected_student is None or s.payload is None:
            self._show_error("Données de l'élève ou de l'image manquantes.")
            return None
        return await self._upload_to(s.detected_student)

    async def select_student(self, student: StudentRecord) -> Optional[str]:
        """Assigne manuellement l'image en attente à l'élève choisi, puis la téléverse."""
        s = self._session
        if s.stage not in (UploadStage.MANUAL_SELECT, UploadStage.CONFIRM) or s.payload is None:
            self._show_error("Aucune image en attente d'assignation.")
            return None
        return await self._upload_to(student)

    def cancel_upload(self) -> None:
        """Abandonne la session. Une copie déjà liée n'est jamais retirée."""
        self._cancel_pending_reset()
        self._generation += 1
        self._session = UploadSession()
        self._publish()
        logger.info("Téléversement annulé")

    async def retry_upload(self) -> UploadSessionState:
        """Relance tout le pipeline (depuis la validation) avec l'image conservée."""
        image_data = self._session.image_data
        if image_data is None:
            return self.state
        return await self.process_image(image_data)

    def set_search_query(self, query: str) -> None:
        self._session.search_query = query or ""
        self._publish()

    # --- Requêtes ---

    def filtered_students(self, query: Optional[str] = None) -> List[StudentRecord]:
        """Élèves proposés pour la sélection manuelle (filtre de session par défaut)."""
        if query is None:
            query = self._session.search_query
        return self.index.search(query, scope=self.teacher_id)

    @property
    def can_start_upload(self) -> bool:
        return self._session.stage == UploadStage.IDLE and not self._session.is_active

    @property
    def status_message(self) -> str:
        if self._session.is_active:
            return self._session.status
        if self._session.error_message:
            return self._session.error_message
        return "Prêt pour le téléversement"

    @property
    def progress_percentage(self) -> str:
        return f"{int(self._session.progress * 100)}%"

    @property
    def needs_manual_selection(self) -> bool:
        return self._session.stage == UploadStage.MANUAL_SELECT

    @property
    def needs_confirmation(self) -> bool:
        return self._session.stage == UploadStage.CONFIRM and self._session.detected_student is not None

    # --- Pipeline ---

    async def _scan(self, generation: int, image_data: bytes) -> None:
        self._set_progress(generation, 0.1, "Traitement de l'image...")
        image, payload = await asyncio.to_thread(prepare_image, image_data, self.config)
        self._ensure_current(generation)
        self._session.payload = payload

        self._session.stage = UploadStage.SCANNING
        self._set_progress(generation, 0.3, "Recherche du QR code...")
        code = await self._detect(image)
        self._ensure_current(generation)

        self._set_progress(generation, 0.5, "Recherche de l'élève...")
        if code is None:
            self._enter_manual_select(generation, "Aucun QR code détecté, sélection manuelle requise")
            return

        student = self.index.lookup(code)
        if student is None:
            logger.info("QR code %s inconnu du registre", code)
            self._enter_manual_select(generation, "QR code détecté mais aucun élève correspondant")
            return

        self._session.stage = UploadStage.CONFIRM
        self._session.detected_student = student
        self._set_progress(generation, 1.0, f"Élève trouvé : {student.name}")
        logger.info("QR code résolu vers l'élève %s", student.id)

    async def _detect(self, image: Image.Image) -> Optional[str]:
        """Un échec du détecteur équivaut à « aucun QR code » : la sélection manuelle reste possible."""
        try:
            return await self.detector.detect_async(image)
        except DetectionError as exc:
            logger.warning("Détecteur QR en échec, bascule en sélection manuelle : %s", exc)
            return None

    def _enter_manual_select(self, generation: int, status: str) -> None:
        self._session.stage = UploadStage.MANUAL_SELECT
        self._session.detected_student = None
        self._session.search_query = ""
        self._set_progress(generation, 1.0, status)

    async def _upload_to(self, student: StudentRecord) -> Optional[str]:
        generation = self._generation
        s = self._session
        s.error_message = None

        if student.id is None:
            self._fail(generation, MissingStudentIdError())
            return None

        s.stage = UploadStage.UPLOADING
        s.detected_student = student
        s.progress = 0.0
        s.status = f"Téléversement vers {student.name}..."
        self._publish()

        try:
            locator = await upload_and_link(
                self.store,
                self.linker,
                s.payload,
                student,
                self.config,
                on_progress=lambda value: self._set_progress(generation, value),
                should_continue=lambda: generation == self._generation,
            )
            self._ensure_current(generation)
        except SessionCancelled:
            logger.debug("Session %d annulée pendant le téléversement", generation)
            return None
        except UploadError as exc:
            self._fail(generation, exc)
            return None
        except Exception as exc:
            logger.exception("Erreur inattendue pendant le téléversement")
            self._fail(generation, UploadError(f"Une erreur inattendue est survenue : {exc}"))
            return None

        s.last_locator = locator
        self._set_progress(generation, 1.0, "Téléversement terminé !")
        logger.info("Copie téléversée pour l'élève %s : %s", student.id, locator)

        self._schedule_reset(generation)
        return locator

    def _schedule_reset(self, generation: int) -> None:
        """La commande rend la main aussitôt ; la session revient à IDLE après le délai."""
        delay = self.config.UPLOAD_RESET_DELAY_SECONDS
        if delay <= 0:
            self._reset(generation)
            return
        self._reset_task = asyncio.get_running_loop().create_task(self._reset_later(generation, delay))

    async def _reset_later(self, generation: int, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reset(generation)

    def _reset(self, generation: int) -> None:
        if generation == self._generation:
            self._session = UploadSession()
            self._publish()

    def _cancel_pending_reset(self) -> None:
        if self._reset_task is not None and not self._reset_task.done():
            self._reset_task.cancel()
        self._reset_task = None

    # --- Gestion d'état ---

    def _start_session(self, image_data: bytes) -> int:
        self._cancel_pending_reset()
        self._generation += 1
        self._session = UploadSession(
            stage=UploadStage.UPLOADING,
            image_data=image_data,
            is_active=True,
            status="Préparation de l'image...",
        )
        self._publish()
        return self._generation

    def _ensure_current(self, generation: int) -> None:
        if generation != self._generation:
            raise SessionCancelled()

    def _set_progress(self, generation: int, progress: float, status: Optional[str] = None) -> None:
        if generation != self._generation:
            return
        # non décroissante au sein d'une phase
        self._session.progress = max(self._session.progress, min(progress, 1.0))
        if status is not None:
            self._session.status = status
        self._publish()

    def _fail(self, generation: int, error: UploadError) -> None:
        if generation != self._generation:
            return
        logger.error("Échec du téléversement : %s", error)
        s = self._session
        s.stage = UploadStage.IDLE
        s.is_active = False
        s.progress = 0.0
        s.payload = None
        s.detected_student = None
        s.status = "Échec du téléversement"
        s.error_message = error.user_message
        self._publish()

    def _show_error(self, message: str) -> None:
        logger.warning("Commande de téléversement refusée : %s", message)
        self._session.error_message = message
        self._publish()
