from typing import Optional, Sequence

from fastapi import HTTPException, status


def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Identifiants invalides ou token expiré",
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden_exception(detail: str = "Accès refusé") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=detail,
    )


def bad_request_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=detail,
    )


# ── Erreurs métier fidélité ───────────────────────────────────────────────────
class LoyaltyError(Exception):
    """Base des erreurs du moteur de fidélité."""
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class Ineligible(LoyaltyError):
    """Commande ou solde sous les seuils : message à afficher, pas une panne."""
    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ProfileNotFound(LoyaltyError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, user_id: str):
        super().__init__(f"Profil fidélité introuvable : {user_id}")
        self.user_id = user_id


class TokenExpired(LoyaltyError):
    def __init__(self, detail: str = "Code expiré, demandez au client de le rafraîchir"):
        super().__init__(detail)


class TokenMalformed(LoyaltyError):
    def __init__(self, detail: str = "Code illisible, veuillez rescanner"):
        super().__init__(detail)


class ConcurrentConflict(LoyaltyError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, user_id: str, attempts: int):
        super().__init__(f"Conflit concurrent sur {user_id} après {attempts} tentatives, réessayez")
        self.user_id = user_id
        self.attempts = attempts


class ResolutionFailed(LoyaltyError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, code: str, attempted: Sequence[str], detail: Optional[str] = None):
        super().__init__(detail or "Aucun client ne correspond à ce code")
        self.code = code
        self.attempted = list(attempted)
