"""
Tests unitaires de la préparation des photos (décodage, validation, compression).
"""

import io
import os
from unittest.mock import patch

import pytest
from PIL import Image

from markbook.config import Settings
from markbook.errors import ImageTooLargeError, ImageValidationError
from markbook.services.image_processing import compress_image, load_image, prepare_image, validate_image


def png_bytes(size=(120, 80), color=(200, 10, 10), mode="RGB") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


def noisy_image(size=(400, 400)) -> Image.Image:
    """Image de bruit aléatoire, peu compressible en JPEG."""
    return Image.frombytes("RGB", size, os.urandom(size[0] * size[1] * 3))


# ============================================================
# load_image / validate_image
# ============================================================

def test_load_image_donnees_invalides():
    with pytest.raises(ImageValidationError) as exc:
        load_image(b"pas une image")
    assert "Impossible de lire" in exc.value.user_message


def test_validate_image_valide():
    data = png_bytes()
    result = validate_image(data, load_image(data), Settings())

    assert result.is_valid
    assert result.issues == []


def test_validate_image_dimensions_hors_limite():
    data = png_bytes(size=(300, 50))
    result = validate_image(data, load_image(data), Settings(MAX_IMAGE_DIMENSION=200))

    assert not result.is_valid
    assert any("200 px" in issue for issue in result.issues)


def test_validate_image_fichier_trop_lourd():
    data = png_bytes()
    result = validate_image(data, load_image(data), Settings(MAX_INPUT_IMAGE_BYTES=10))

    assert not result.is_valid
    assert len(result.issues) == 1


# ============================================================
# compress_image
# ============================================================

def test_compress_image_produit_un_jpeg_sous_le_budget():
    payload = compress_image(noisy_image(), Settings(MAX_IMAGE_BYTES=200_000))

    assert payload[:2] == b"\xff\xd8"
    assert len(payload) <= 200_000


def test_compress_image_convertit_les_images_avec_transparence():
    image = Image.new("RGBA", (50, 50), (0, 0, 255, 128))
    payload = compress_image(image, Settings())

    assert Image.open(io.BytesIO(payload)).format == "JPEG"


def test_compress_image_budget_inatteignable():
    """Une image qui reste hors budget à la qualité plancher n'est jamais retournée."""
    with pytest.raises(ImageTooLargeError):
        compress_image(noisy_image(), Settings(MAX_IMAGE_BYTES=100))


# ============================================================
# prepare_image
# ============================================================

def test_prepare_image_retourne_image_et_jpeg():
    image, payload = prepare_image(png_bytes(size=(64, 48)), Settings())

    assert image.size == (64, 48)
    assert Image.open(io.BytesIO(payload)).format == "JPEG"


def test_prepare_image_invalide_leve_validation_error():
    with pytest.raises(ImageValidationError) as exc:
        prepare_image(png_bytes(size=(300, 300)), Settings(MAX_IMAGE_DIMENSION=100))
    assert exc.value.issues


def test_prepare_image_fichier_trop_lourd_refuse_sans_decodage():
    """Un fichier au-delà de la limite n'est jamais ouvert par Pillow."""
    with patch("markbook.services.image_processing.load_image") as mock_load:
        with pytest.raises(ImageValidationError) as exc:
            prepare_image(b"\x00" * 64, Settings(MAX_INPUT_IMAGE_BYTES=10))

    mock_load.assert_not_called()
    assert len(exc.value.issues) == 1
