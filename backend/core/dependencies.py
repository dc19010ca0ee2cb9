from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.security import verify_access_token
from core.exceptions import credentials_exception, forbidden_exception
from database import db, get_client, get_db
from models.common import UserRole
from services.loyalty_service import LoyaltyService
from services.loyalty_store import MongoIssuedCodeLog, MongoProfileStore, MongoTransactionLog

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    if not credentials:
        raise credentials_exception()
    payload = verify_access_token(credentials.credentials)
    if not payload:
        raise credentials_exception()

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception()

    user = await db.users.find_one({"user_id": user_id}, {"_id": 0})
    if not user:
        raise credentials_exception()
    if not user.get("is_active", True):
        raise forbidden_exception("Compte désactivé")
    return user


def require_role(*roles: UserRole):
    """
    Dépendance qui vérifie que l'utilisateur connecté possède l'un des rôles donnés.
    Usage : Depends(require_role(UserRole.ADMIN, UserRole.SUPERADMIN))
    """
    async def _check(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user.get("role") not in [r.value for r in roles]:
            raise forbidden_exception()
        return current_user
    return _check


# Raccourcis pratiques
require_admin = require_role(UserRole.ADMIN, UserRole.SUPERADMIN)
require_staff = require_role(UserRole.STAFF, UserRole.ADMIN, UserRole.SUPERADMIN)


def get_loyalty_service() -> LoyaltyService:
    """Service fidélité adossé à MongoDB, construit par requête."""
    database = get_db()
    if database is None:
        raise RuntimeError("Database not connected. Call connect_db() first.")
    transactions = MongoTransactionLog(database)
    return LoyaltyService(
        profiles=MongoProfileStore(database, transactions, client=get_client()),
        transactions=transactions,
        issued_codes=MongoIssuedCodeLog(database),
    )
