"""
Arithmétique des points : gains, conversion points → remise, palier.
Fonctions pures, aucun accès base.
"""
import math
from typing import Optional

from config import settings
from models.common import Tier
from services.loyalty_tiers import TierTable, default_tier_table


def floor_amount(value: float) -> int:
    """floor() insensible au bruit flottant (300 × 0.1 = 30.000000000000004)."""
    return math.floor(round(value, 6))


def points_earned(order_amount: float, multiplier: float = 1.0) -> int:
    """0 sous le minimum de commande, sinon floor(montant × taux × multiplicateur)."""
    if order_amount < settings.MIN_ORDER_AMOUNT:
        return 0
    return floor_amount(order_amount * settings.POINTS_PER_CURRENCY_UNIT * multiplier)


def earning_multiplier(
    tier: Tier | str,
    is_first_order: bool = False,
    is_festival: bool = False,
    table: Optional[TierTable] = None,
) -> float:
    # palier × première commande × festival : multiplication, dans cet ordre
    table = table or default_tier_table()
    multiplier = table.rule(tier).earning_multiplier
    if is_first_order:
        multiplier *= settings.FIRST_ORDER_MULTIPLIER
    if is_festival:
        multiplier *= settings.FESTIVAL_MULTIPLIER
    return multiplier


def order_points(
    order_amount: float,
    tier: Tier | str,
    is_first_order: bool = False,
    is_festival: bool = False,
    is_birthday: bool = False,
    table: Optional[TierTable] = None,
) -> tuple[int, int]:
    """
    Retourne (points de commande, bonus anniversaire).
    Le bonus anniversaire s'ajoute après multiplication, et seulement si la
    commande atteint le minimum.
    """
    base = points_earned(order_amount, earning_multiplier(tier, is_first_order, is_festival, table))
    if order_amount < settings.MIN_ORDER_AMOUNT or not is_birthday:
        return base, 0
    return base, settings.BIRTHDAY_BONUS_POINTS


def tier_for(points: int, table: Optional[TierTable] = None) -> Tier:
    return (table or default_tier_table()).tier_for(points)


def discount_from_points(points: int) -> int:
    return floor_amount(points * settings.REDEMPTION_RATE)


def points_for_discount(discount_amount: float) -> int:
    """Points nécessaires pour couvrir une remise (arrondi supérieur)."""
    if settings.REDEMPTION_RATE <= 0:
        raise ValueError("REDEMPTION_RATE doit être > 0")
    return math.ceil(discount_amount / settings.REDEMPTION_RATE)
