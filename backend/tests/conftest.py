import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from services.loyalty_ledger import LedgerTransactor, new_profile_defaults
from services.loyalty_service import LoyaltyService
from services.token_resolver import TokenResolver


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class InMemoryTransactionLog:
    def __init__(self):
        self.entries: list[dict] = []

    async def append_many(self, entries: list[dict], session=None) -> None:
        self.entries.extend(copy.deepcopy(e) for e in entries)

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[dict]:
        mine = [(i, e) for i, e in enumerate(self.entries) if e["user_id"] == user_id]
        mine.sort(key=lambda pair: (pair[1]["timestamp"], pair[0]), reverse=True)
        return [copy.deepcopy(e) for _, e in mine[:limit]]

    async def sum_for_user(self, user_id: str) -> dict:
        points = [e["points"] for e in self.entries if e["user_id"] == user_id]
        return {
            "net":      sum(points),
            "earned":   sum(p for p in points if p > 0),
            "redeemed": sum(-p for p in points if p < 0),
        }

    async def totals(self, start=None, end=None) -> dict:
        window = [
            e for e in self.entries
            if (start is None or e["timestamp"] >= start) and (end is None or e["timestamp"] < end)
        ]
        return {
            "users":                len({e["user_id"] for e in window}),
            "earned":               sum(e["points"] for e in window if e["points"] > 0),
            "redeemed":             sum(-e["points"] for e in window if e["points"] < 0),
            "discounts_given":      sum(e.get("discount_amount") or 0 for e in window),
            "first_time_discounts": sum(1 for e in window if e["kind"] == "first_time_discount"),
        }


class InMemoryProfileStore:
    """
    Même contrat que MongoProfileStore. get() rend la main à la boucle après
    lecture, pour que deux opérations concurrentes s'entrelacent réellement.
    """

    def __init__(self, log: InMemoryTransactionLog):
        self.log = log
        self.docs: dict[str, dict] = {}
        self.fail_commits = 0
        self.commit_calls = 0
        self.flush_calls = 0

    def seed(self, user_id: str, now: datetime, **fields) -> dict:
        doc = {**new_profile_defaults(now), "user_id": user_id, **fields}
        self.docs[user_id] = doc
        return doc

    async def get(self, user_id: str) -> Optional[dict]:
        doc = copy.deepcopy(self.docs.get(user_id))
        await asyncio.sleep(0)
        return doc

    async def get_or_create(self, user_id: str, defaults: dict) -> dict:
        if user_id not in self.docs:
            self.docs[user_id] = {**defaults, "user_id": user_id}
        return await self.get(user_id)

    async def find_one_by(self, field: str, value: str) -> Optional[dict]:
        for doc in self.docs.values():
            if doc.get(field) == value:
                return copy.deepcopy(doc)
        return None

    async def set_fields(self, user_id: str, fields: dict) -> bool:
        if user_id not in self.docs:
            return False
        self.docs[user_id].update(fields)
        return True

    async def count_by_orders(self) -> dict:
        orders = [doc.get("total_orders", 0) for doc in self.docs.values()]
        return {
            "none":       sum(1 for n in orders if n == 0),
            "first_time": sum(1 for n in orders if n == 1),
            "returning":  sum(1 for n in orders if n >= 2),
        }

    async def flush_pending(self, user_id: str) -> int:
        self.flush_calls += 1
        return 0

    async def commit(self, user_id: str, expected_version, updates: dict, entries: list[dict]) -> bool:
        self.commit_calls += 1
        if self.fail_commits > 0:
            self.fail_commits -= 1
            return False
        doc = self.docs.get(user_id)
        if doc is None or doc.get("version") != expected_version:
            return False
        doc.update(updates)
        doc["version"] = (expected_version or 0) + 1
        await self.log.append_many(entries)
        return True


class InMemoryIssuedCodeLog:
    def __init__(self):
        self.codes: list[dict] = []

    async def record(self, code, code_type, user_id, issued_at, expires_at) -> None:
        self.codes.append({
            "code": code, "code_type": code_type, "user_id": user_id,
            "issued_at": issued_at, "expires_at": expires_at,
        })

    async def find_active(self, code: str, now: datetime) -> Optional[dict]:
        active = [c for c in self.codes if c["code"] == code and c["expires_at"] > now]
        return max(active, key=lambda c: c["issued_at"]) if active else None


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 14, 10, 30, tzinfo=timezone.utc))


@pytest.fixture
def transactions():
    return InMemoryTransactionLog()


@pytest.fixture
def profiles(transactions):
    return InMemoryProfileStore(transactions)


@pytest.fixture
def issued_codes():
    return InMemoryIssuedCodeLog()


@pytest.fixture
def ledger(profiles, clock):
    return LedgerTransactor(profiles, clock=clock)


@pytest.fixture
def resolver(profiles, issued_codes, clock):
    return TokenResolver(profiles, issued_codes, clock=clock)


@pytest.fixture
def service(profiles, transactions, issued_codes, clock):
    return LoyaltyService(profiles, transactions, issued_codes, clock=clock)
