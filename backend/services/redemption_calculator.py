"""
Calcul des remises fidélité : remise de palier, remise en points, meilleure option.

Ces fonctions ne lèvent pas pour un refus métier : elles renvoient un résultat
avec eligible/valid=False et une raison lisible.

  Bronze   : min(remise fixe, 2 % commande, plafond), type = la plus petite des deux
  Silver   : min(5 % commande, plafond)
  Gold     : min(10 % commande, plafond)
  Platinum : min(15 % commande + bonus fixe, plafond)

Remise de bienvenue : min(FIRST_TIME_DISCOUNT, commande), sans coût en points,
prioritaire sur les autres options pour une première commande.
"""
from typing import Optional

from config import settings
from models.common import DiscountType, Tier
from models.loyalty import DiscountRecommendation, RedemptionCalculation, TierDiscount
from services.loyalty_points import discount_from_points, floor_amount, points_for_discount
from services.loyalty_tiers import TierTable, default_tier_table


def calculate_tier_discount(
    order_amount: float,
    tier: Tier | str,
    available_points: int,
    table: Optional[TierTable] = None,
) -> TierDiscount:
    table = table or default_tier_table()
    rule = table.rule(tier)

    if order_amount < settings.MIN_ORDER_AMOUNT:
        return TierDiscount(
            eligible=False,
            reason=f"Commande minimum de ₹{settings.MIN_ORDER_AMOUNT:g} pour une remise",
        )
    if available_points < rule.points_required_to_redeem:
        missing = rule.points_required_to_redeem - available_points
        return TierDiscount(
            eligible=False,
            reason=f"Il faut {rule.points_required_to_redeem} points pour le palier "
                   f"{rule.name.value} ({missing} manquants)",
        )

    percentage = floor_amount(order_amount * rule.discount_percentage)
    cap = rule.max_discount_per_order

    if rule.name == Tier.BRONZE:
        flat = settings.BRONZE_FLAT_DISCOUNT
        discount = min(flat, percentage, cap)
        disc_type = DiscountType.FLAT if flat <= percentage else DiscountType.PERCENTAGE
    elif rule.name == Tier.PLATINUM:
        discount = min(percentage + settings.PLATINUM_FIXED_BONUS, cap)
        disc_type = DiscountType.PERCENTAGE
    else:
        discount = min(percentage, cap)
        disc_type = DiscountType.PERCENTAGE

    return TierDiscount(discount_amount=float(discount), type=disc_type, eligible=True)


def calculate_redemption(
    points_to_redeem: int,
    available_points: int,
    order_amount: float,
) -> RedemptionCalculation:
    def _invalid(reason: str) -> RedemptionCalculation:
        return RedemptionCalculation(
            points_to_redeem=points_to_redeem,
            remaining_amount=order_amount,
            valid=False,
            reason=reason,
        )

    if points_to_redeem <= 0:
        return _invalid("Le nombre de points doit être positif")
    if points_to_redeem > available_points:
        return _invalid(f"Solde insuffisant : {available_points} points disponibles")
    if points_to_redeem < settings.MIN_REDEMPTION:
        return _invalid(f"Minimum {settings.MIN_REDEMPTION} points par utilisation")

    # Plafonds : % de la commande et montant absolu, le plus bas l'emporte
    percentage_cap = floor_amount(order_amount * settings.MAX_REDEMPTION_PERCENTAGE)
    discount = min(discount_from_points(points_to_redeem), percentage_cap, settings.MAX_REDEMPTION_AMOUNT)
    if discount <= 0:
        return _invalid("Montant de commande trop faible pour utiliser des points")

    return RedemptionCalculation(
        points_to_redeem=min(points_for_discount(discount), points_to_redeem),
        discount_amount=float(discount),
        remaining_amount=order_amount - discount,
        valid=True,
    )


def calculate_first_time_discount(order_amount: float, is_first_order: bool) -> TierDiscount:
    if not settings.FIRST_TIME_DISCOUNT_ENABLED:
        return TierDiscount(eligible=False, reason="Remise de bienvenue désactivée")
    if not is_first_order:
        return TierDiscount(eligible=False, reason="Remise de bienvenue réservée à la première commande")
    discount = min(settings.FIRST_TIME_DISCOUNT, order_amount)
    if discount <= 0:
        return TierDiscount(eligible=False, reason="Montant de commande invalide")
    return TierDiscount(discount_amount=float(discount), type=DiscountType.FIRST_TIME, eligible=True)


def get_best_available_discount(
    order_amount: float,
    tier: Tier | str,
    available_points: int,
    points_to_redeem: Optional[int] = None,
    table: Optional[TierTable] = None,
    is_first_order: bool = False,
) -> DiscountRecommendation:
    """
    Compare remise de palier et remise en points, recommande la plus forte.
    Égalité → palier. Une remise de bienvenue éligible passe avant tout.
    """
    if points_to_redeem is None:
        points_to_redeem = available_points

    tier_option = calculate_tier_discount(order_amount, tier, available_points, table)
    tier_cost = 0
    if tier_option.eligible:
        tier_cost = points_for_discount(tier_option.discount_amount)
        if tier_cost > available_points:
            tier_option = TierDiscount(eligible=False, reason="Solde insuffisant pour la remise de palier")
            tier_cost = 0

    points_option = calculate_redemption(points_to_redeem, available_points, order_amount)
    first_time_option = calculate_first_time_discount(order_amount, is_first_order)

    recommended, amount, cost = "none", 0.0, 0
    if tier_option.eligible:
        recommended, amount, cost = "tier", tier_option.discount_amount, tier_cost
    if points_option.valid and points_option.discount_amount > amount:
        recommended, amount, cost = "points", points_option.discount_amount, points_option.points_to_redeem
    if first_time_option.eligible:
        recommended, amount, cost = "first_time", first_time_option.discount_amount, 0

    return DiscountRecommendation(
        recommended=recommended,
        discount_amount=amount,
        points_cost=cost,
        tier_option=tier_option,
        points_option=points_option,
        first_time_option=first_time_option,
    )
