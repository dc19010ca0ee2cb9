"""
Jetons d'accès de l'API fidélité (clients et comptoirs).
Émis par le service d'authentification ; ici on les vérifie, et on en fabrique pour les outils internes.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional

from jose import jwt, JWTError

from config import settings

ALGORITHM = "HS256"
TOKEN_TYPE = "access"


def create_access_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    claims = {"sub": user_id, "role": role, "exp": expire, "type": TOKEN_TYPE}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=ALGORITHM)


def verify_access_token(token: str) -> Optional[dict]:
    """Payload si le jeton est valide, non expiré et de type access ; None sinon."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != TOKEN_TYPE or not payload.get("sub"):
        return None
    return payload
