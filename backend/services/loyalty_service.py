"""
Service fidélité : point d'entrée des routers.
Instance construite explicitement avec ses stores (pas de singleton global).
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from core.exceptions import LoyaltyError, ProfileNotFound
from models.common import CodeType
from models.loyalty import (
    AdjustRequest,
    AwardResult,
    DiscountRecommendation,
    LoyaltyAnalytics,
    LoyaltyStats,
    RedemptionResult,
)
from services.loyalty_ledger import LedgerTransactor, is_first_order, new_profile_defaults
from services.loyalty_tiers import TierTable, default_tier_table
from services.redemption_calculator import get_best_available_discount
from services.token_codec import issue_barcode_token, issue_qr_token, token_ttl
from services.token_resolver import TokenResolver

logger = logging.getLogger(__name__)


class LoyaltyService:
    def __init__(
        self,
        profiles,
        transactions,
        issued_codes,
        table: Optional[TierTable] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.profiles = profiles
        self.transactions = transactions
        self.issued_codes = issued_codes
        self.table = table or default_tier_table()
        self.clock = clock
        self.ledger = LedgerTransactor(profiles, self.table, clock=clock)
        self.resolver = TokenResolver(profiles, issued_codes, clock=clock)

    async def get_profile(self, user_id: str) -> dict:
        return await self.profiles.get_or_create(user_id, new_profile_defaults(self.clock()))

    # ── Émission des codes (non transactionnel : la dernière émission gagne) ──
    async def issue_qr_token(self, user_id: str) -> dict:
        await self.get_profile(user_id)
        now = self.clock()
        token = issue_qr_token(user_id, now=now)
        expires_at = now + token_ttl()
        await self.profiles.set_fields(user_id, {
            "current_token":            token,
            "current_token_expires_at": expires_at,
        })
        await self.issued_codes.record(token, CodeType.QR.value, user_id, now, expires_at)
        return {"token": token, "expires_at": expires_at}

    async def issue_barcode(self, user_id: str) -> dict:
        await self.get_profile(user_id)
        now = self.clock()
        barcode = issue_barcode_token(user_id, now=now)
        expires_at = now + token_ttl()
        await self.profiles.set_fields(user_id, {
            "current_barcode":            barcode,
            "current_barcode_expires_at": expires_at,
        })
        await self.issued_codes.record(barcode, CodeType.BARCODE.value, user_id, now, expires_at)
        return {"barcode": barcode, "expires_at": expires_at}

    # ── Côté client ───────────────────────────────────────────────────────────
    async def quote(self, user_id: str, order_amount: float) -> DiscountRecommendation:
        profile = await self.get_profile(user_id)
        points = int(profile.get("points", 0))
        return get_best_available_discount(
            order_amount, self.table.tier_for(points), points,
            table=self.table, is_first_order=is_first_order(profile),
        )

    async def list_transactions(self, user_id: str, limit: int = 50) -> list[dict]:
        await self.profiles.flush_pending(user_id)
        return await self.transactions.list_for_user(user_id, limit)

    async def get_stats(self, user_id: str) -> LoyaltyStats:
        profile = await self.profiles.get(user_id)
        if not profile:
            raise ProfileNotFound(user_id)
        await self.profiles.flush_pending(user_id)
        totals = await self.transactions.sum_for_user(user_id)
        points = int(profile.get("points", 0))
        tier = self.table.tier_for(points)
        next_rule = self.table.next_rule(tier)
        return LoyaltyStats(
            user_id=user_id,
            current_points=points,
            tier=tier,
            next_tier=next_rule.name if next_rule else None,
            points_to_next_tier=max(0, next_rule.min_points - points) if next_rule else 0,
            total_orders=int(profile.get("total_orders", 0)),
            total_spent=float(profile.get("total_spent", 0.0)),
            total_points_earned=totals["earned"],
            total_points_redeemed=totals["redeemed"],
        )

    # ── Côté staff ────────────────────────────────────────────────────────────
    async def resolve_code(self, code: str, code_type: Optional[CodeType] = None) -> str:
        return await self.resolver.resolve(code, code_type)

    async def lookup_scanned(self, code: str, code_type: Optional[CodeType] = None) -> dict:
        """Profil du client scanné, sans jamais le créer : un code sans profil est une erreur."""
        user_id = await self.resolve_code(code, code_type)
        profile = await self.profiles.get(user_id)
        if not profile:
            raise ProfileNotFound(user_id)
        return profile

    async def redeem_scanned(
        self,
        code: str,
        order_amount: float,
        code_type: Optional[CodeType] = None,
        order_id: Optional[str] = None,
        staff_id: Optional[str] = None,
        points_to_redeem: Optional[int] = None,
    ) -> RedemptionResult:
        user_id = await self.resolve_code(code, code_type)
        return await self.ledger.redeem(user_id, order_amount, points_to_redeem, order_id, staff_id)

    async def award_points(
        self,
        user_id: str,
        order_amount: float,
        order_id: Optional[str] = None,
        is_festival: bool = False,
        created_by: Optional[str] = None,
    ) -> AwardResult:
        return await self.ledger.award_points(
            user_id, order_amount, order_id=order_id, is_festival=is_festival, created_by=created_by,
        )

    # ── Admin ─────────────────────────────────────────────────────────────────
    async def adjust_points(self, user_id: str, delta: int, reason: str, created_by: Optional[str] = None) -> dict:
        return await self.ledger.adjust(user_id, delta, reason, created_by)

    async def bulk_adjust(self, adjustments: list[AdjustRequest], created_by: Optional[str] = None) -> dict:
        """Chaque ajustement est sa propre unité atomique ; les échecs sont rapportés, pas propagés."""
        applied, failed = [], []
        for adj in adjustments:
            try:
                applied.append(await self.adjust_points(adj.user_id, adj.delta, adj.reason, created_by))
            except LoyaltyError as e:
                logger.warning(f"Ajustement ignoré pour {adj.user_id} : {e.detail}")
                failed.append({"user_id": adj.user_id, "error": e.detail})
        return {"applied": applied, "failed": failed}

    async def reconcile(self, user_id: str) -> dict:
        profile = await self.profiles.get(user_id)
        if not profile:
            raise ProfileNotFound(user_id)
        await self.profiles.flush_pending(user_id)
        totals = await self.transactions.sum_for_user(user_id)
        balance = int(profile.get("points", 0))
        return {
            "user_id":    user_id,
            "balance":    balance,
            "log_sum":    totals["net"],
            "consistent": balance == totals["net"],
        }

    async def get_analytics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> LoyaltyAnalytics:
        totals = await self.transactions.totals(start, end)
        orders = await self.profiles.count_by_orders()
        return LoyaltyAnalytics(
            total_users=totals["users"],
            total_points_earned=totals["earned"],
            total_points_redeemed=totals["redeemed"],
            total_discounts_given=totals["discounts_given"],
            first_time_discounts=totals["first_time_discounts"],
            first_time_users=orders["first_time"],
            returning_users=orders["returning"],
            users_without_orders=orders["none"],
        )
