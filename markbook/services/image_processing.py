"""
Préparation des photos de copies avant téléversement : décodage, validation
(taille et dimensions) et compression JPEG sous le budget configuré.
"""

import io
import logging
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from markbook.config import Settings, settings as default_settings
from markbook.errors import ImageTooLargeError, ImageValidationError
from markbook.schemas.upload import ValidationResult

logger = logging.getLogger(__name__)


def load_image(data: bytes) -> Image.Image:
    """Décode les octets reçus en image Pillow, orientée selon ses métadonnées EXIF."""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ImageValidationError(["Impossible de lire les données de l'image"]) from exc
    return ImageOps.exif_transpose(image)


def _input_size_issue(config: Settings) -> str:
    return f"L'image dépasse la limite de {config.MAX_INPUT_IMAGE_BYTES // (1024 * 1024)} Mo"


def validate_image(data: bytes, image: Image.Image, config: Settings = default_settings) -> ValidationResult:
    """Vérifie le poids du fichier reçu et les dimensions de l'image."""
    issues = []

    if len(data) > config.MAX_INPUT_IMAGE_BYTES:
        issues.append(_input_size_issue(config))

    width, height = image.size
    if width > config.MAX_IMAGE_DIMENSION or height > config.MAX_IMAGE_DIMENSION:
        issues.append(f"Les dimensions de l'image dépassent {config.MAX_IMAGE_DIMENSION} px")

    if width == 0 or height == 0:
        issues.append("L'image est vide")

    return ValidationResult(is_valid=not issues, issues=issues)


def compress_image(image: Image.Image, config: Settings = default_settings) -> bytes:
    """
    Encode l'image en JPEG en baissant la qualité par paliers jusqu'à passer
    sous MAX_IMAGE_BYTES. Lève ImageTooLargeError si la qualité plancher ne
    suffit pas : une image hors budget n'est jamais téléversée.
    """
    rgb = image if image.mode == "RGB" else image.convert("RGB")

    quality = config.JPEG_INITIAL_QUALITY
    while True:
        buf = io.BytesIO()
        rgb.save(buf, format="JPEG", quality=quality, optimize=True)
        payload = buf.getvalue()

        if len(payload) <= config.MAX_IMAGE_BYTES:
            logger.debug("Image compressée : %d octets (qualité %d)", len(payload), quality)
            return payload

        next_quality = quality - config.JPEG_QUALITY_STEP
        if next_quality < config.JPEG_MIN_QUALITY:
            break
        quality = next_quality

    logger.warning("Compression impossible sous %d octets (dernier essai : %d)", config.MAX_IMAGE_BYTES, len(payload))
    raise ImageTooLargeError(
        f"Impossible de compresser l'image sous "
        f"{config.MAX_IMAGE_BYTES // (1024 * 1024)} Mo."
    )


def prepare_image(data: bytes, config: Settings = default_settings) -> Tuple[Image.Image, bytes]:
    """
    Décode, valide puis compresse l'image.
    Retourne l'image décodée (pour la détection) et le JPEG à téléverser.
    Un fichier trop lourd est refusé avant tout décodage.
    """
    if len(data) > config.MAX_INPUT_IMAGE_BYTES:
        raise ImageValidationError([_input_size_issue(config)])

    image = load_image(data)

    validation = validate_image(data, image, config)
    if not validation.is_valid:
        raise ImageValidationError(validation.issues)

    return image, compress_image(image, config)
