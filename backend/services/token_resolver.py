"""
Résolution d'un code scanné (QR, EAN-13, UPC-E, carte, téléphone) vers un user_id.

Les stratégies sont évaluées dans l'ordre, la première qui trouve gagne :
  0. qr_token       : token QR décodé, si le profil existe
  1. current_code   : code courant du profil (current_token / current_barcode)
  2. issued_history : code émis récemment et encore valide (rotation depuis le dernier scan)
  3. ean13_variants : 13 chiffres, + variantes sans 1er / dernier / les deux chiffres
  4. upc_e          : 8 chiffres UPC-E convertis en UPC-A
  5. card_number    : numéro de carte tel quel
  6. phone          : 10 à 12 chiffres, brut puis avec indicatifs pays

Une stratégie qui lève est traitée comme « pas trouvé » ; on passe à la suivante.
Avec code_type=qr, seul le décodage QR est tenté et ses erreurs remontent telles quelles.
"""
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, NamedTuple, Optional

from config import settings
from core.exceptions import ProfileNotFound, ResolutionFailed, TokenExpired, TokenMalformed
from models.common import CodeType
from services.token_codec import decode_qr_token, looks_like_qr_token

logger = logging.getLogger(__name__)


class ResolutionStrategy(NamedTuple):
    name: str
    fn:   Callable[[str], Awaitable[Optional[str]]]


def upc_e_to_upc_a(code: str) -> str:
    """Expansion UPC-E (8 chiffres) → UPC-A (12 chiffres) selon le dernier chiffre du corps."""
    if len(code) != 8 or not code.isdigit():
        raise ValueError("UPC-E : 8 chiffres attendus")
    number_system, d, check = code[0], code[1:7], code[7]
    last = d[5]
    if last in "012":
        body = d[0:2] + last + "0000" + d[2:5]
    elif last == "3":
        body = d[0:3] + "00000" + d[3:5]
    elif last == "4":
        body = d[0:4] + "00000" + d[4]
    else:
        body = d[0:5] + "0000" + last
    return number_system + body + check


def ean13_variants(code: str) -> list[str]:
    """Le code, puis sans dernier, sans premier, sans premier ni dernier chiffre."""
    return [code, code[:-1], code[1:], code[1:-1]]


def phone_candidates(code: str) -> list[str]:
    candidates = [code] + [f"{prefix}{code[-10:]}" for prefix in settings.PHONE_COUNTRY_CODES]
    return list(dict.fromkeys(candidates))


def _is_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    if expires_at is None:
        return True
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= now


class TokenResolver:
    def __init__(
        self,
        profiles,
        issued_codes,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        strategies: Optional[list[ResolutionStrategy]] = None,
    ):
        self.profiles = profiles
        self.issued_codes = issued_codes
        self.clock = clock
        self.strategies = strategies if strategies is not None else self.default_strategies()

    def default_strategies(self) -> list[ResolutionStrategy]:
        return [
            ResolutionStrategy("qr_token", self._qr_token),
            ResolutionStrategy("current_code", self._current_code),
            ResolutionStrategy("issued_history", self._issued_history),
            ResolutionStrategy("ean13_variants", self._ean13_variants),
            ResolutionStrategy("upc_e", self._upc_e),
            ResolutionStrategy("card_number", self._card_number),
            ResolutionStrategy("phone", self._phone),
        ]

    async def resolve(self, code: str, code_type: Optional[CodeType] = None) -> str:
        code = (code or "").strip()
        if not code:
            raise ResolutionFailed(code, [], "Code vide")

        # QR annoncé par le scanner : TokenExpired / TokenMalformed / ProfileNotFound remontent
        if code_type == CodeType.QR:
            user_id = decode_qr_token(code, now=self.clock())
            if not await self.profiles.get(user_id):
                raise ProfileNotFound(user_id)
            return user_id

        attempted = []
        saw_expired = False
        for strategy in self.strategies:
            attempted.append(strategy.name)
            try:
                user_id = await strategy.fn(code)
            except TokenExpired:
                saw_expired = True
                continue
            except Exception as e:
                logger.warning(f"Stratégie {strategy.name} en échec pour le code {code!r} : {e}")
                continue
            if user_id:
                logger.info(f"Code résolu via {strategy.name} → {user_id}")
                return user_id

        if saw_expired:
            raise TokenExpired()
        logger.warning(f"Aucune correspondance pour le code {code!r} ; stratégies essayées : {attempted}")
        raise ResolutionFailed(code, attempted)

    # ── Stratégies ────────────────────────────────────────────────────────────
    async def _qr_token(self, code: str) -> Optional[str]:
        if not looks_like_qr_token(code):
            return None
        try:
            user_id = decode_qr_token(code, now=self.clock())
        except TokenMalformed:
            return None
        # Token valide mais client inconnu : aucune création de profil au scan
        if not await self.profiles.get(user_id):
            logger.warning(f"Token QR valide pour un profil inexistant : {user_id}")
            return None
        return user_id

    async def _card_lookup(self, candidates: list[str]) -> Optional[str]:
        for candidate in candidates:
            profile = await self.profiles.find_one_by("card_number", candidate)
            if profile:
                return profile["user_id"]
        return None

    async def _current_code(self, code: str) -> Optional[str]:
        now = self.clock()
        for field in ("current_token", "current_barcode"):
            profile = await self.profiles.find_one_by(field, code)
            if not profile:
                continue
            if _is_expired(profile.get(f"{field}_expires_at"), now):
                raise TokenExpired()
            return profile["user_id"]
        return None

    async def _issued_history(self, code: str) -> Optional[str]:
        issued = await self.issued_codes.find_active(code, self.clock())
        return issued["user_id"] if issued else None

    async def _ean13_variants(self, code: str) -> Optional[str]:
        if len(code) != 13 or not code.isdigit():
            return None
        return await self._card_lookup(ean13_variants(code))

    async def _upc_e(self, code: str) -> Optional[str]:
        if len(code) != 8 or not code.isdigit():
            return None
        upc_a = upc_e_to_upc_a(code)
        return await self._card_lookup([upc_a, f"0{upc_a}"])

    async def _card_number(self, code: str) -> Optional[str]:
        return await self._card_lookup([code])

    async def _phone(self, code: str) -> Optional[str]:
        if not code.isdigit() or not 10 <= len(code) <= 12:
            return None
        for candidate in phone_candidates(code):
            profile = await self.profiles.find_one_by("phone", candidate)
            if profile:
                return profile["user_id"]
        return None
