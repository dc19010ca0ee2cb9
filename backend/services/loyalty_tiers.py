"""
Table des paliers fidélité : seuils de points, remises et multiplicateurs de gain.
Statique, sans état ; construite depuis config.LOYALTY_TIERS.
"""
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict

from config import settings
from models.common import Tier


class TierRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    name:                      Tier
    min_points:                int
    discount_percentage:       float
    max_discount_per_order:    float
    points_required_to_redeem: int
    earning_multiplier:        float = 1.0


class TierTable:
    def __init__(self, rules: Iterable[TierRule]):
        ordered = sorted(rules, key=lambda r: r.min_points)
        if not ordered:
            raise ValueError("La table des paliers est vide")
        if ordered[0].min_points != 0:
            raise ValueError("Le palier le plus bas doit commencer à 0 point")
        for low, high in zip(ordered, ordered[1:]):
            if high.min_points <= low.min_points:
                raise ValueError(f"Seuils non strictement croissants : {low.name.value} / {high.name.value}")
            if high.max_discount_per_order <= low.max_discount_per_order:
                raise ValueError(f"Plafonds non strictement croissants : {low.name.value} / {high.name.value}")
        self._rules = tuple(ordered)
        self._by_name = {r.name: r for r in ordered}

    @classmethod
    def from_config(cls, rows: Optional[list[dict]] = None) -> "TierTable":
        return cls(TierRule(**row) for row in (rows if rows is not None else settings.LOYALTY_TIERS))

    @property
    def rules(self) -> tuple[TierRule, ...]:
        return self._rules

    @property
    def lowest(self) -> TierRule:
        return self._rules[0]

    def rule(self, tier: Tier | str) -> TierRule:
        try:
            return self._by_name[Tier(tier)]
        except ValueError:
            # Valeur inconnue en base → palier le plus bas
            return self.lowest

    def tier_for(self, points: int) -> Tier:
        """Palier le plus haut dont le seuil est atteint, évalué du haut vers le bas."""
        for rule in reversed(self._rules):
            if points >= rule.min_points:
                return rule.name
        return self.lowest.name

    def next_rule(self, tier: Tier | str) -> Optional[TierRule]:
        current = self.rule(tier)
        idx = self._rules.index(current)
        return self._rules[idx + 1] if idx + 1 < len(self._rules) else None


_default_table: Optional[TierTable] = None


def default_tier_table() -> TierTable:
    global _default_table
    if _default_table is None:
        _default_table = TierTable.from_config()
    return _default_table
