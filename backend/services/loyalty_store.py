"""
Accès MongoDB du moteur fidélité : profils, journal des transactions, codes émis.

Contrat utilisé par le ledger et le résolveur (les doubles de test l'imitent) :
  ProfileStore.get / get_or_create / find_one_by / set_fields / count_by_orders
  ProfileStore.commit(user_id, expected_version, updates, entries) -> bool
      écrit le profil SI sa version vaut encore expected_version, et ajoute
      les entrées du journal dans la même unité atomique. False = conflit.
  ProfileStore.flush_pending(user_id)
      déverse dans le journal les entrées restées dans l'outbox du profil.
  TransactionLog.append_many / list_for_user / sum_for_user / totals
  IssuedCodeLog.record / find_active

Sans replica set (MONGO_TRANSACTIONS=False), les entrées du journal sont écrites
dans le profil (champ pending_entries) par le MÊME update que le solde, puis
recopiées dans loyalty_transactions. Une panne entre les deux laisse les entrées
dans l'outbox ; le prochain flush les recopie (tx_id unique, donc idempotent).
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError

from config import settings

logger = logging.getLogger(__name__)

PENDING_FIELD = "pending_entries"
_DUPLICATE_KEY = 11000


def _strip_id(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    return {k: v for k, v in doc.items() if k != "_id"}


def _only_duplicates(error: BulkWriteError) -> bool:
    write_errors = error.details.get("writeErrors", [])
    return bool(write_errors) and all(e.get("code") == _DUPLICATE_KEY for e in write_errors)


class MongoTransactionLog:
    def __init__(self, database: AsyncIOMotorDatabase):
        self._col = database.loyalty_transactions

    async def append_many(self, entries: list[dict], session=None) -> None:
        if not entries:
            return
        # insert_many ajoute _id aux dicts : on insère des copies
        await self._col.insert_many([dict(e) for e in entries], ordered=False, session=session)

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[dict]:
        cursor = self._col.find({"user_id": user_id}, {"_id": 0}).sort("timestamp", DESCENDING).limit(limit)
        return await cursor.to_list(length=limit)

    async def sum_for_user(self, user_id: str) -> dict:
        pipeline = [
            {"$match": {"user_id": user_id}},
            {"$group": {
                "_id":      None,
                "net":      {"$sum": "$points"},
                "earned":   {"$sum": {"$cond": [{"$gt": ["$points", 0]}, "$points", 0]}},
                "redeemed": {"$sum": {"$cond": [{"$lt": ["$points", 0]}, {"$abs": "$points"}, 0]}},
            }},
        ]
        rows = await self._col.aggregate(pipeline).to_list(length=1)
        if not rows:
            return {"net": 0, "earned": 0, "redeemed": 0}
        return {k: rows[0][k] for k in ("net", "earned", "redeemed")}

    async def totals(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
        """Agrégats du journal sur [start, end[ pour le tableau de bord admin."""
        match = {}
        if start or end:
            match["timestamp"] = {}
            if start:
                match["timestamp"]["$gte"] = start
            if end:
                match["timestamp"]["$lt"] = end
        pipeline = [
            {"$match": match},
            {"$group": {
                "_id":                  None,
                "users":                {"$addToSet": "$user_id"},
                "earned":               {"$sum": {"$cond": [{"$gt": ["$points", 0]}, "$points", 0]}},
                "redeemed":             {"$sum": {"$cond": [{"$lt": ["$points", 0]}, {"$abs": "$points"}, 0]}},
                "discounts_given":      {"$sum": {"$ifNull": ["$discount_amount", 0]}},
                "first_time_discounts": {"$sum": {"$cond": [{"$eq": ["$kind", "first_time_discount"]}, 1, 0]}},
            }},
            {"$project": {
                "_id":                  0,
                "users":                {"$size": "$users"},
                "earned":               1,
                "redeemed":             1,
                "discounts_given":      1,
                "first_time_discounts": 1,
            }},
        ]
        rows = await self._col.aggregate(pipeline).to_list(length=1)
        if not rows:
            return {"users": 0, "earned": 0, "redeemed": 0, "discounts_given": 0.0, "first_time_discounts": 0}
        return rows[0]


class MongoProfileStore:
    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        log: MongoTransactionLog,
        client: Optional[AsyncIOMotorClient] = None,
        use_transactions: Optional[bool] = None,
    ):
        self._col = database.loyalty_profiles
        self.log = log
        self._client = client
        self._use_transactions = settings.MONGO_TRANSACTIONS if use_transactions is None else use_transactions

    async def get(self, user_id: str) -> Optional[dict]:
        return await self._col.find_one({"user_id": user_id}, {"_id": 0, PENDING_FIELD: 0})

    async def get_or_create(self, user_id: str, defaults: dict) -> dict:
        """Retourne le profil existant ou en crée un nouveau (0 point)."""
        profile = await self.get(user_id)
        if profile:
            return profile
        doc = {**defaults, "user_id": user_id}
        try:
            await self._col.insert_one(doc)
        except DuplicateKeyError:
            # Création concurrente : l'autre requête a gagné
            return await self.get(user_id)
        return _strip_id(doc)

    async def find_one_by(self, field: str, value: str) -> Optional[dict]:
        return await self._col.find_one({field: value}, {"_id": 0, PENDING_FIELD: 0})

    async def set_fields(self, user_id: str, fields: dict) -> bool:
        result = await self._col.update_one(
            {"user_id": user_id},
            {"$set": {**fields, "updated_at": datetime.now(timezone.utc)}},
        )
        return result.matched_count == 1

    async def count_by_orders(self) -> dict:
        """Clients sans commande, à une seule commande, et fidèles (deux ou plus)."""
        pipeline = [
            {"$group": {
                "_id":   {"$min": [{"$ifNull": ["$total_orders", 0]}, 2]},
                "count": {"$sum": 1},
            }},
        ]
        rows = await self._col.aggregate(pipeline).to_list(length=3)
        by_bucket = {row["_id"]: row["count"] for row in rows}
        return {
            "none":       by_bucket.get(0, 0),
            "first_time": by_bucket.get(1, 0),
            "returning":  by_bucket.get(2, 0),
        }

    async def _compare_and_set(
        self,
        user_id: str,
        expected_version: Optional[int],
        updates: dict,
        session=None,
        outbox: Optional[list[dict]] = None,
    ) -> bool:
        # Profils antérieurs au versionnage : pas de champ "version"
        version_filter = {"$exists": False} if expected_version is None else expected_version
        update = {"$set": {**updates, "updated_at": datetime.now(timezone.utc)}, "$inc": {"version": 1}}
        if outbox:
            update["$push"] = {PENDING_FIELD: {"$each": [dict(e) for e in outbox]}}
        result = await self._col.update_one(
            {"user_id": user_id, "version": version_filter},
            update,
            session=session,
        )
        return result.matched_count == 1

    async def flush_pending(self, user_id: str) -> int:
        """
        Recopie l'outbox du profil dans le journal puis la vide.
        Retourne le nombre d'entrées recopiées ; 0 si rien à faire ou si Mongo
        refuse l'écriture (les entrées restent alors dans l'outbox).
        """
        doc = await self._col.find_one({"user_id": user_id}, {"_id": 0, PENDING_FIELD: 1})
        pending = (doc or {}).get(PENDING_FIELD) or []
        if not pending:
            return 0

        try:
            await self.log.append_many(pending)
        except BulkWriteError as e:
            # Déjà recopiées par un flush précédent interrompu avant le $pull
            if not _only_duplicates(e):
                logger.warning(f"Outbox fidélité non vidée pour {user_id} : {e}")
                return 0
        except PyMongoError as e:
            logger.warning(f"Outbox fidélité non vidée pour {user_id} : {e}")
            return 0

        tx_ids = [entry["tx_id"] for entry in pending]
        await self._col.update_one(
            {"user_id": user_id},
            {"$pull": {PENDING_FIELD: {"tx_id": {"$in": tx_ids}}}},
        )
        return len(pending)

    async def commit(self, user_id: str, expected_version: Optional[int], updates: dict, entries: list[dict]) -> bool:
        if not (self._use_transactions and self._client is not None):
            # Solde et entrées dans le même update : atomique sans replica set
            if not await self._compare_and_set(user_id, expected_version, updates, outbox=entries):
                return False
            await self.flush_pending(user_id)
            return True

        try:
            async with await self._client.start_session() as session:
                async with session.start_transaction():
                    if not await self._compare_and_set(user_id, expected_version, updates, session):
                        await session.abort_transaction()
                        return False
                    await self.log.append_many(entries, session=session)
        except PyMongoError as e:
            if e.has_error_label("TransientTransactionError"):
                logger.warning(f"Transaction Mongo transitoire pour {user_id} : {e}")
                return False
            raise
        return True


class MongoIssuedCodeLog:
    def __init__(self, database: AsyncIOMotorDatabase):
        self._col = database.loyalty_issued_codes

    async def record(self, code: str, code_type: str, user_id: str, issued_at: datetime, expires_at: datetime) -> None:
        await self._col.insert_one({
            "code":       code,
            "code_type":  code_type,
            "user_id":    user_id,
            "issued_at":  issued_at,
            "expires_at": expires_at,
        })

    async def find_active(self, code: str, now: datetime) -> Optional[dict]:
        return await self._col.find_one(
            {"code": code, "expires_at": {"$gt": now}},
            {"_id": 0},
            sort=[("issued_at", DESCENDING)],
        )
