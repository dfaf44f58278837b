"""
Détection du QR code présent sur (ou à côté de) une copie photographiée.

Utilise OpenCV QRCodeDetector : d'abord sur l'image d'origine, puis sur une
version en niveaux de gris binarisée (Otsu) pour les photos peu contrastées.
L'absence de QR code n'est pas une erreur : detect() retourne None.
"""

import asyncio
import logging
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from markbook.config import Settings, settings as default_settings
from markbook.errors import DetectionError

logger = logging.getLogger(__name__)


class CodeDetector:
    """Lecteur de QR code mono-coup : au plus une chaîne décodée par image."""

    def __init__(self, config: Settings = default_settings):
        self.timeout = config.DETECTION_TIMEOUT_SECONDS

    def detect(self, image: Image.Image) -> Optional[str]:
        """
        Retourne le contenu du premier QR code trouvé dans l'image, ou None.
        Lève DetectionError uniquement si l'image est inexploitable.
        """
        if not isinstance(image, Image.Image):
            raise DetectionError("Image invalide transmise au détecteur.")

        try:
            pixels = np.asarray(image.convert("RGB"))
            bgr = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
            detector = cv2.QRCodeDetector()

            data, _, _ = detector.detectAndDecode(bgr)
            if data:
                return data

            gray = cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)
            _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
            data, _, _ = detector.detectAndDecode(binary)
            if data:
                return data
        except (cv2.error, OSError, ValueError) as exc:
            raise DetectionError(f"La détection du QR code a échoué : {exc}") from exc

        return None

    async def detect_async(self, image: Image.Image) -> Optional[str]:
        """Exécute detect() sur un thread de travail, borné par le délai configuré."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.detect, image), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Détection QR interrompue après %.1f s", self.timeout)
            raise DetectionError("La détection du QR code a pris trop de temps.") from exc
