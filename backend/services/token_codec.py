"""
Codes de fidélité présentés au comptoir.

QR      : base64(header).base64(payload).base64(signature)
          payload = {userId, iat, exp, purpose}, timestamps Unix en secondes.
          La « signature » est un simple encodage réversible de header+payload+userId :
          ce n'est PAS une signature cryptographique (format conservé pour la
          compatibilité des scanners existants).
Barcode : 13 chiffres = 8 chiffres dérivés du user_id + 4 chiffres d'horodatage
          + 1 chiffre de contrôle EAN-13.

Le décodage des codes-barres demande des lectures en base : voir token_resolver.
"""
import base64
import binascii
import json
from datetime import datetime, timedelta, timezone
from typing import Optional

from config import settings
from core.exceptions import TokenExpired, TokenMalformed

QR_HEADER = {"alg": "HS256", "typ": "JWT"}
QR_PURPOSE = "loyalty_discount"


def token_ttl() -> timedelta:
    return timedelta(minutes=settings.TOKEN_TTL_MINUTES)


def _b64encode(raw: str) -> str:
    return base64.b64encode(raw.encode()).decode("ascii")


def _b64decode(segment: str) -> str:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.b64decode(padded, validate=True).decode()


def _compact(data: dict) -> str:
    return json.dumps(data, separators=(",", ":"))


def _pseudo_signature(encoded_header: str, encoded_payload: str, user_id: str) -> str:
    return _b64encode(f"{encoded_header}.{encoded_payload}.{user_id}")


# ── QR ────────────────────────────────────────────────────────────────────────
def issue_qr_token(user_id: str, now: Optional[datetime] = None) -> str:
    issued_at = now or datetime.now(timezone.utc)
    iat = int(issued_at.timestamp())
    payload = {
        "userId":  user_id,
        "iat":     iat,
        "exp":     iat + int(token_ttl().total_seconds()),
        "purpose": QR_PURPOSE,
    }
    encoded_header = _b64encode(_compact(QR_HEADER))
    encoded_payload = _b64encode(_compact(payload))
    return f"{encoded_header}.{encoded_payload}.{_pseudo_signature(encoded_header, encoded_payload, user_id)}"


def looks_like_qr_token(code: str) -> bool:
    return code.count(".") == 2


def decode_qr_token(token: str, now: Optional[datetime] = None, verify_signature: bool = True) -> str:
    """
    Retourne le user_id du token.
    Lève TokenMalformed si le format est invalide, TokenExpired si exp <= now.
    """
    parts = token.strip().split(".")
    if len(parts) != 3:
        raise TokenMalformed()

    try:
        payload = json.loads(_b64decode(parts[1]))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise TokenMalformed() from e

    if not isinstance(payload, dict):
        raise TokenMalformed()
    user_id = payload.get("userId")
    exp = payload.get("exp")
    if not isinstance(user_id, str) or not user_id or not isinstance(exp, (int, float)):
        raise TokenMalformed()

    if verify_signature and parts[2] != _pseudo_signature(parts[0], parts[1], user_id):
        raise TokenMalformed()

    current = now or datetime.now(timezone.utc)
    if exp <= current.timestamp():
        raise TokenExpired()
    return user_id


# ── Code-barres EAN-13 ────────────────────────────────────────────────────────
def ean13_check_digit(digits: str) -> int:
    """Positions paires (index 0) ×1, impaires ×3."""
    if len(digits) != 12 or not digits.isdigit():
        raise ValueError("12 chiffres attendus")
    total = sum(int(d) * (1 if i % 2 == 0 else 3) for i, d in enumerate(digits))
    return (10 - total % 10) % 10


def is_valid_ean13(code: str) -> bool:
    if len(code) != 13 or not code.isdigit():
        return False
    return ean13_check_digit(code[:12]) == int(code[12])


def _user_digits(user_id: str) -> str:
    h = 0
    for ch in user_id:
        h = (h * 31 + ord(ch)) % 100_000_000
    return f"{h:08d}"


def issue_barcode_token(user_id: str, now: Optional[datetime] = None) -> str:
    issued_at = now or datetime.now(timezone.utc)
    time_slice = f"{int(issued_at.timestamp()) % 10_000:04d}"
    content = (_user_digits(user_id) + time_slice).ljust(12, "0")[:12]
    return f"{content}{ean13_check_digit(content)}"
