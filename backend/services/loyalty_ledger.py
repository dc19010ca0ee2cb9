"""
Ledger fidélité : seul chemin de mutation du solde de points.

Chaque opération suit la même boucle optimiste :
  1. lecture fraîche du profil (avec sa version)
  2. calcul de la mutation sur CE solde (jamais un solde fourni par l'appelant)
  3. commit atomique : profil (si version inchangée) + écritures du journal
  4. conflit de version → on recommence à l'étape 1, au plus LEDGER_MAX_RETRIES fois

Le plancher à zéro du solde est appliqué ici et nulle part ailleurs.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from config import settings
from core.exceptions import ConcurrentConflict, Ineligible, ProfileNotFound
from models.common import Tier, TransactionKind
from models.loyalty import AwardResult, RedemptionResult
from services.loyalty_points import order_points
from services.loyalty_tiers import TierTable, default_tier_table
from services.redemption_calculator import get_best_available_discount

logger = logging.getLogger(__name__)


def _tx_id() -> str:
    return f"ltx_{uuid.uuid4().hex[:12]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_profile_defaults(now: datetime) -> dict:
    return {
        "points":       0,
        "tier":         Tier.BRONZE.value,
        "total_orders": 0,
        "total_spent":  0.0,
        "version":      0,
        "created_at":   now,
        "updated_at":   now,
    }


def is_first_order(profile: dict) -> bool:
    """Aucune commande créditée et remise de bienvenue pas encore consommée."""
    return int(profile.get("total_orders", 0)) == 0 and not profile.get("first_time_discount_used", False)


def apply_points(current: int, delta: int) -> tuple[int, int]:
    """Retourne (nouveau solde, delta réellement appliqué) avec plancher à 0."""
    new_balance = max(0, current + delta)
    return new_balance, new_balance - current


class LedgerTransactor:
    def __init__(
        self,
        profiles,
        table: Optional[TierTable] = None,
        max_retries: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.profiles = profiles
        self.table = table or default_tier_table()
        self.max_retries = max_retries or settings.LEDGER_MAX_RETRIES
        self.clock = clock

    def _entry(
        self,
        user_id: str,
        points: int,
        kind: TransactionKind,
        description: str,
        now: datetime,
        order_id: Optional[str] = None,
        created_by: Optional[str] = None,
        discount_amount: Optional[float] = None,
    ) -> dict:
        entry = {
            "tx_id":       _tx_id(),
            "user_id":     user_id,
            "points":      points,
            "kind":        kind.value,
            "description": description,
            "timestamp":   now,
            "order_id":    order_id,
            "created_by":  created_by,
        }
        if discount_amount is not None:
            entry["discount_amount"] = discount_amount
        return entry

    async def _transact(self, user_id: str, mutate, create: bool = False):
        for attempt in range(1, self.max_retries + 1):
            now = self.clock()
            if create:
                profile = await self.profiles.get_or_create(user_id, new_profile_defaults(now))
            else:
                profile = await self.profiles.get(user_id)
            if profile is None:
                raise ProfileNotFound(user_id)

            # Ineligible remonte tel quel : pas de nouvelle tentative
            updates, entries, result = mutate(profile, now)
            if not updates and not entries:
                return result

            if await self.profiles.commit(user_id, profile.get("version"), updates, entries):
                for e in entries:
                    logger.info(
                        "Points %s : user=%s delta=%+d solde=%s",
                        e["kind"], user_id, e["points"], updates.get("points"),
                    )
                return result

            logger.warning(f"Conflit de version sur {user_id} (tentative {attempt}/{self.max_retries})")

        raise ConcurrentConflict(user_id, self.max_retries)

    # ── Utilisation des points (scan au comptoir) ────────────────────────────
    async def redeem(
        self,
        user_id: str,
        order_amount: float,
        points_to_redeem: Optional[int] = None,
        order_id: Optional[str] = None,
        staff_id: Optional[str] = None,
    ) -> RedemptionResult:
        def mutate(profile: dict, now: datetime):
            current = int(profile.get("points", 0))
            tier = self.table.tier_for(current)
            best = get_best_available_discount(
                order_amount, tier, current, points_to_redeem, self.table,
                is_first_order=is_first_order(profile),
            )
            if best.recommended == "none":
                reason = best.tier_option.reason or best.points_option.reason or "Aucune remise disponible"
                raise Ineligible(reason)

            if best.recommended == "first_time":
                kind = TransactionKind.FIRST_TIME
                description = f"Remise de bienvenue sur commande ₹{order_amount:g}"
            elif best.recommended == "tier":
                kind = TransactionKind.TIER_DISCOUNT
                description = f"Remise palier {tier.value} sur commande ₹{order_amount:g}"
            else:
                kind = TransactionKind.REDEEMED
                description = f"Points utilisés sur commande ₹{order_amount:g}"

            new_balance, applied = apply_points(current, -best.points_cost)
            new_tier = self.table.tier_for(new_balance)
            updates = {"points": new_balance, "tier": new_tier.value}
            if best.recommended == "first_time":
                updates["first_time_discount_used"] = True
            entries = [self._entry(
                user_id, applied, kind, description, now, order_id, staff_id, best.discount_amount,
            )]
            result = RedemptionResult(
                user_id=user_id,
                order_amount=order_amount,
                discount_applied=best.discount_amount,
                final_amount=order_amount - best.discount_amount,
                points_used=-applied,
                remaining_points=new_balance,
                tier=new_tier,
                option=best.recommended,
            )
            return updates, entries, result

        return await self._transact(user_id, mutate)

    # ── Gain de points à la commande ─────────────────────────────────────────
    async def award_points(
        self,
        user_id: str,
        order_amount: float,
        order_id: Optional[str] = None,
        is_festival: bool = False,
        is_birthday: Optional[bool] = None,
        created_by: Optional[str] = None,
    ) -> AwardResult:
        def mutate(profile: dict, now: datetime):
            current = int(profile.get("points", 0))
            previous_tier = self.table.tier_for(current)
            first_order = int(profile.get("total_orders", 0)) == 0
            birthday = is_birthday
            if birthday is None:
                birthday = profile.get("birthday") == now.strftime("%m-%d")

            base, bonus = order_points(order_amount, previous_tier, first_order, is_festival, birthday, self.table)
            entries = []
            if base:
                entries.append(self._entry(
                    user_id, base, TransactionKind.EARNED,
                    f"Points gagnés sur commande ₹{order_amount:g}", now, order_id, created_by,
                ))
            if bonus:
                entries.append(self._entry(
                    user_id, bonus, TransactionKind.BONUS, "Bonus anniversaire", now, order_id, created_by,
                ))

            new_balance, _ = apply_points(current, base + bonus)
            new_tier = self.table.tier_for(new_balance)
            if new_tier != previous_tier:
                entries.append(self._entry(
                    user_id, 0, TransactionKind.BONUS,
                    f"Passage au palier {new_tier.value}", now, order_id, created_by,
                ))

            updates = {
                "points":       new_balance,
                "tier":         new_tier.value,
                "total_orders": int(profile.get("total_orders", 0)) + 1,
                "total_spent":  float(profile.get("total_spent", 0.0)) + order_amount,
            }
            result = AwardResult(
                user_id=user_id,
                points_earned=base + bonus,
                new_balance=new_balance,
                tier=new_tier,
                previous_tier=previous_tier,
            )
            return updates, entries, result

        return await self._transact(user_id, mutate, create=True)

    # ── Ajustement manuel (admin) ────────────────────────────────────────────
    async def adjust(self, user_id: str, delta: int, reason: str, created_by: Optional[str] = None) -> dict:
        def mutate(profile: dict, now: datetime):
            current = int(profile.get("points", 0))
            new_balance, applied = apply_points(current, delta)
            result = {
                "user_id":       user_id,
                "applied_delta": applied,
                "new_balance":   new_balance,
                "tier":          self.table.tier_for(new_balance).value,
            }
            if applied == 0:
                return {}, [], result
            kind = TransactionKind.BONUS if applied > 0 else TransactionKind.ADJUSTMENT
            updates = {"points": new_balance, "tier": result["tier"]}
            return updates, [self._entry(user_id, applied, kind, reason, now, None, created_by)], result

        return await self._transact(user_id, mutate)
