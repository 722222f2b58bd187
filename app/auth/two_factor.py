"""TOTP two-factor authentication: secrets, enrolment QR codes and backup codes."""
from __future__ import annotations

import base64
import io
import json
import secrets
import string
from typing import List, Optional, Tuple

import pyotp
import qrcode
import qrcode.image.svg

from ..config import settings
from .security import hash_code

BACKUP_CODE_COUNT = 10
BACKUP_CODE_LENGTH = 8
_BACKUP_ALPHABET = string.ascii_uppercase + string.digits


def generate_secret() -> str:
    """Generate a new base32 TOTP secret."""
    return pyotp.random_base32()


def provisioning_uri(email: str, secret: str) -> str:
    """otpauth:// URI understood by authenticator apps."""
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=settings.totp_issuer)


def generate_qr_code(email: str, secret: str) -> str:
    """Render the provisioning URI as an SVG data URL."""
    img = qrcode.make(provisioning_uri(email, secret), image_factory=qrcode.image.svg.SvgPathImage)
    buf = io.BytesIO()
    img.save(buf)
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def verify_token(token: Optional[str], secret: Optional[str]) -> bool:
    """Check a TOTP code (±1 step). Never raises."""
    if not token or not secret:
        return False
    code = token.strip().replace(" ", "")
    if not code.isdigit():
        return False
    try:
        return pyotp.TOTP(secret).verify(code, valid_window=1)
    except (ValueError, TypeError):
        # Malformed base32 secret
        return False


def generate_backup_codes() -> List[str]:
    return [
        "".join(secrets.choice(_BACKUP_ALPHABET) for _ in range(BACKUP_CODE_LENGTH))
        for _ in range(BACKUP_CODE_COUNT)
    ]


def hash_backup_codes(codes: List[str]) -> str:
    """Serialise backup codes for storage (digests only)."""
    return json.dumps([hash_code(c) for c in codes])


def consume_backup_code(stored: Optional[str], code: Optional[str]) -> Tuple[bool, Optional[str]]:
    """
    Try to use *code* against the stored digests.

    Returns (matched, remaining) where remaining is the new serialised list
    with the used code removed. A backup code works once.
    """
    if not stored or not code:
        return False, stored
    digests = json.loads(stored)
    candidate = hash_code(code)
    for digest in digests:
        if secrets.compare_digest(digest, candidate):
            digests.remove(digest)
            return True, json.dumps(digests)
    return False, stored
