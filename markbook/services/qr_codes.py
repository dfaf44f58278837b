"""
Génération des QR codes d'identification des élèves.

L'étiquette imprimée est collée sur la copie (ou posée à côté) avant la photo ;
son contenu est le scannable_code de la fiche élève.
"""

import io
import time

import qrcode


def generate_scannable_code(student_code: str) -> str:
    """Génère un contenu de QR code unique pour un élève (format : STUDENT_<code>_<horodatage>)."""
    return f"STUDENT_{student_code}_{time.time():.6f}"


def generate_qr_image(code: str) -> bytes:
    """Génère une image PNG du QR code encodant le code donné."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(code)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
