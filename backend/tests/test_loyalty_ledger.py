import asyncio
import random

import pytest

from core.exceptions import ConcurrentConflict, Ineligible, ProfileNotFound
from models.common import Tier, TransactionKind
from services.loyalty_ledger import apply_points


def test_apply_points_floor():
    assert apply_points(30, -50) == (0, -30)
    assert apply_points(30, 20) == (50, 20)
    assert apply_points(0, -1) == (0, 0)


# ── Utilisation ───────────────────────────────────────────────────────────────
async def test_redeem_points_option(ledger, profiles, transactions, clock):
    profiles.seed("user_g", clock(), total_orders=3, points=1000, tier="Gold")
    result = await ledger.redeem("user_g", 500.0, order_id="ord_1", staff_id="staff_1")

    assert result.option == "points"
    assert result.discount_applied == 250
    assert result.final_amount == 250
    assert result.points_used == 250
    assert result.remaining_points == 750
    assert result.tier == Tier.SILVER

    doc = profiles.docs["user_g"]
    assert doc["points"] == 750
    assert doc["tier"] == "Silver"
    assert doc["version"] == 1

    [entry] = transactions.entries
    assert entry["points"] == -250
    assert entry["kind"] == TransactionKind.REDEEMED.value
    assert entry["order_id"] == "ord_1"
    assert entry["created_by"] == "staff_1"


async def test_redeem_tier_option_costs_points(ledger, profiles, transactions, clock):
    profiles.seed("user_g", clock(), total_orders=3, points=1000)
    result = await ledger.redeem("user_g", 500.0, points_to_redeem=30)

    assert result.option == "tier"
    assert result.discount_applied == 50
    assert result.points_used == 50
    assert profiles.docs["user_g"]["points"] == 950
    assert transactions.entries[0]["kind"] == TransactionKind.TIER_DISCOUNT.value


async def test_redeem_uses_fresh_tier_not_stored_field(ledger, profiles, clock):
    # Champ tier obsolète : c'est le solde qui fait foi
    profiles.seed("user_g", clock(), total_orders=3, points=1000, tier="Bronze")
    result = await ledger.redeem("user_g", 500.0, points_to_redeem=30)
    assert result.discount_applied == 50


async def test_redeem_ineligible(ledger, profiles, transactions, clock):
    profiles.seed("user_b", clock(), total_orders=3, points=0)
    with pytest.raises(Ineligible) as exc:
        await ledger.redeem("user_b", 200.0)
    assert exc.value.status_code == 422
    assert profiles.docs["user_b"]["version"] == 0
    assert transactions.entries == []


async def test_redeem_unknown_profile(ledger):
    with pytest.raises(ProfileNotFound):
        await ledger.redeem("ghost", 500.0)


async def test_concurrent_redeems_do_not_double_spend(ledger, profiles, transactions, clock):
    profiles.seed("user_b", clock(), total_orders=3, points=50)

    results = await asyncio.gather(
        ledger.redeem("user_b", 500.0),
        ledger.redeem("user_b", 500.0),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], Ineligible)
    assert successes[0].points_used == 50
    assert profiles.docs["user_b"]["points"] == 0
    assert sum(e["points"] for e in transactions.entries) == -50


async def test_conflicts_are_retried(ledger, profiles, clock):
    profiles.seed("user_g", clock(), total_orders=3, points=1000)
    profiles.fail_commits = 2
    await ledger.redeem("user_g", 500.0)
    assert profiles.commit_calls == 3


async def test_conflicts_exhaust_retries(ledger, profiles, transactions, clock):
    profiles.seed("user_g", clock(), total_orders=3, points=1000)
    profiles.fail_commits = 10
    with pytest.raises(ConcurrentConflict) as exc:
        await ledger.redeem("user_g", 500.0)
    assert exc.value.status_code == 409
    assert profiles.commit_calls == ledger.max_retries
    assert profiles.docs["user_g"]["points"] == 1000
    assert transactions.entries == []


# ── Gains ─────────────────────────────────────────────────────────────────────
async def test_award_first_order_creates_profile(ledger, profiles, transactions):
    result = await ledger.award_points("user_new", 500.0, order_id="ord_1")

    assert result.points_earned == 100
    assert result.new_balance == 100
    assert result.tier == Tier.BRONZE
    doc = profiles.docs["user_new"]
    assert doc["total_orders"] == 1
    assert doc["total_spent"] == 500.0
    assert [e["kind"] for e in transactions.entries] == ["earned"]


async def test_award_below_minimum_counts_order(ledger, profiles, transactions, clock):
    profiles.seed("user_a", clock(), points=10, total_orders=2)
    result = await ledger.award_points("user_a", 80.0)
    assert result.points_earned == 0
    assert profiles.docs["user_a"]["total_orders"] == 3
    assert transactions.entries == []


async def test_award_promotes_tier(ledger, profiles, transactions, clock):
    profiles.seed("user_a", clock(), points=480, total_orders=3)
    result = await ledger.award_points("user_a", 200.0)

    assert result.points_earned == 20
    assert result.previous_tier == Tier.BRONZE
    assert result.tier == Tier.SILVER
    assert profiles.docs["user_a"]["tier"] == "Silver"
    kinds = [(e["kind"], e["points"]) for e in transactions.entries]
    assert kinds == [("earned", 20), ("bonus", 0)]
    assert "Silver" in transactions.entries[1]["description"]


async def test_award_birthday_bonus(ledger, profiles, transactions, clock):
    profiles.seed("user_a", clock(), points=0, total_orders=1, birthday=clock().strftime("%m-%d"))
    result = await ledger.award_points("user_a", 200.0)
    assert result.points_earned == 120
    assert [e["points"] for e in transactions.entries] == [20, 100]


async def test_award_festival(ledger, profiles, clock):
    profiles.seed("user_a", clock(), points=1000, total_orders=4)
    result = await ledger.award_points("user_a", 200.0, is_festival=True)
    # Gold 1.5 × festival 3
    assert result.points_earned == 90


# ── Ajustements ───────────────────────────────────────────────────────────────
async def test_adjust_is_clamped_at_zero(ledger, profiles, transactions, clock):
    profiles.seed("user_a", clock(), points=30)
    result = await ledger.adjust("user_a", -50, "Correction", created_by="admin_1")

    assert result["applied_delta"] == -30
    assert result["new_balance"] == 0
    [entry] = transactions.entries
    assert entry["points"] == -30
    assert entry["kind"] == "adjustment"
    assert entry["created_by"] == "admin_1"


async def test_adjust_positive_is_bonus(ledger, profiles, transactions, clock):
    profiles.seed("user_a", clock(), points=400)
    result = await ledger.adjust("user_a", 150, "Geste commercial")
    assert result["tier"] == "Silver"
    assert transactions.entries[0]["kind"] == "bonus"


async def test_adjust_without_effect_does_not_commit(ledger, profiles, transactions, clock):
    profiles.seed("user_a", clock(), points=0)
    result = await ledger.adjust("user_a", -10, "Rien à retirer")
    assert result["applied_delta"] == 0
    assert profiles.commit_calls == 0
    assert transactions.entries == []


# ── Propriétés ────────────────────────────────────────────────────────────────
async def test_random_operations_keep_balance_and_log_in_sync(service, profiles, clock):
    rng = random.Random(20260314)
    await service.award_points("user_p", 300.0)

    for _ in range(150):
        op = rng.choice(["award", "redeem", "adjust"])
        try:
            if op == "award":
                await service.award_points("user_p", rng.choice([50.0, 120.0, 345.5, 999.0]))
            elif op == "redeem":
                await service.ledger.redeem(
                    "user_p", rng.choice([90.0, 150.0, 420.0, 2000.0]),
                    points_to_redeem=rng.choice([None, 1, 25, 400]),
                )
            else:
                await service.adjust_points("user_p", rng.randint(-300, 300), "test")
        except Ineligible:
            pass
        clock.advance(minutes=1)

        doc = profiles.docs["user_p"]
        assert doc["points"] >= 0
        assert doc["tier"] == service.table.tier_for(doc["points"]).value
        check = await service.reconcile("user_p")
        assert check["consistent"], check


# ── Remise de bienvenue ───────────────────────────────────────────────────────
async def test_first_order_gets_welcome_discount_once(ledger, profiles, transactions, clock):
    profiles.seed("user_new", clock())

    result = await ledger.redeem("user_new", 300.0, order_id="ord_1")
    assert result.option == "first_time"
    assert result.discount_applied == 100
    assert result.final_amount == 200
    assert result.points_used == 0
    assert profiles.docs["user_new"]["first_time_discount_used"] is True

    [entry] = transactions.entries
    assert entry["kind"] == TransactionKind.FIRST_TIME.value
    assert entry["points"] == 0
    assert entry["discount_amount"] == 100

    with pytest.raises(Ineligible):
        await ledger.redeem("user_new", 300.0)


async def test_welcome_discount_capped_by_order(ledger, profiles, clock):
    profiles.seed("user_new", clock())
    result = await ledger.redeem("user_new", 60.0)
    assert result.discount_applied == 60
    assert result.final_amount == 0


async def test_welcome_discount_has_priority_over_points(ledger, profiles, clock):
    # Points offerts avant toute commande : la remise de bienvenue passe d'abord et ne les consomme pas
    profiles.seed("user_new", clock(), points=400)
    result = await ledger.redeem("user_new", 1000.0)
    assert result.option == "first_time"
    assert result.remaining_points == 400


async def test_concurrent_welcome_discounts_apply_once(ledger, profiles, transactions, clock):
    profiles.seed("user_new", clock())
    results = await asyncio.gather(
        ledger.redeem("user_new", 300.0),
        ledger.redeem("user_new", 300.0),
        return_exceptions=True,
    )
    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert [e["kind"] for e in transactions.entries] == ["first_time_discount"]


async def test_redeem_entries_record_discount(ledger, profiles, transactions, clock):
    profiles.seed("user_g", clock(), total_orders=3, points=1000)
    await ledger.redeem("user_g", 500.0)
    assert transactions.entries[0]["discount_amount"] == 250
