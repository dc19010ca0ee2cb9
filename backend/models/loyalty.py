from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from models.common import CodeType, DiscountType, Tier, TransactionKind


class LoyaltyProfile(BaseModel):
    user_id:            str
    points:             int   = 0
    tier:               Tier  = Tier.BRONZE
    total_orders:       int   = 0
    total_spent:        float = 0.0
    phone:              Optional[str] = None
    card_number:        Optional[str] = None   # carte physique (EAN-13 / UPC)
    birthday:           Optional[str] = None   # "MM-DD"
    current_token:            Optional[str]      = None
    current_token_expires_at: Optional[datetime] = None
    current_barcode:            Optional[str]      = None
    current_barcode_expires_at: Optional[datetime] = None
    first_time_discount_used: bool = False
    version:            int = 0                # concurrence optimiste
    created_at:         datetime
    updated_at:         datetime


class LoyaltyTransaction(BaseModel):
    tx_id:       str
    user_id:     str
    points:      int              # signé : + gagné, - utilisé
    kind:        TransactionKind
    description: str
    timestamp:   datetime
    order_id:    Optional[str] = None
    created_by:  Optional[str] = None
    discount_amount: Optional[float] = None   # remise accordée (utilisations uniquement)


# ── Résultats de calcul (pas d'exception : éligible ou non + raison) ─────────
class TierDiscount(BaseModel):
    discount_amount: float = 0.0
    type:            DiscountType = DiscountType.NONE
    eligible:        bool = False
    reason:          Optional[str] = None


class RedemptionCalculation(BaseModel):
    points_to_redeem: int   = 0
    discount_amount:  float = 0.0
    remaining_amount: float = 0.0
    valid:            bool  = False
    reason:           Optional[str] = None


class DiscountRecommendation(BaseModel):
    recommended:       str   = "none"   # "first_time" | "tier" | "points" | "none"
    discount_amount:   float = 0.0
    points_cost:       int   = 0
    tier_option:       TierDiscount
    points_option:     RedemptionCalculation
    first_time_option: Optional[TierDiscount] = None


class RedemptionResult(BaseModel):
    user_id:          str
    order_amount:     float
    discount_applied: float
    final_amount:     float
    points_used:      int
    remaining_points: int
    tier:             Tier
    option:           str


class AwardResult(BaseModel):
    user_id:       str
    points_earned: int
    new_balance:   int
    tier:          Tier
    previous_tier: Tier


class LoyaltyStats(BaseModel):
    user_id:               str
    current_points:        int
    tier:                  Tier
    next_tier:             Optional[Tier] = None
    points_to_next_tier:   int = 0
    total_orders:          int = 0
    total_spent:           float = 0.0
    total_points_earned:   int = 0
    total_points_redeemed: int = 0


class LoyaltyAnalytics(BaseModel):
    """Tableau de bord admin. Les totaux du journal respectent la période demandée, pas les compteurs de clients."""
    total_users:           int   = 0   # clients ayant au moins une écriture sur la période
    total_points_earned:   int   = 0
    total_points_redeemed: int   = 0
    total_discounts_given: float = 0.0
    first_time_discounts:  int   = 0
    first_time_users:      int   = 0   # une seule commande
    returning_users:       int   = 0   # deux commandes ou plus
    users_without_orders:  int   = 0


# ── Corps de requêtes ─────────────────────────────────────────────────────────
class QuoteRequest(BaseModel):
    order_amount: float = Field(gt=0)


class ScanRequest(BaseModel):
    code:      str
    code_type: Optional[CodeType] = None


class ScanRedeemRequest(ScanRequest):
    order_amount:     float = Field(gt=0)
    order_id:         Optional[str] = None
    points_to_redeem: Optional[int] = None


class AwardRequest(BaseModel):
    user_id:      str
    order_amount: float = Field(ge=0)
    order_id:     Optional[str] = None
    is_festival:  bool = False


class AdjustRequest(BaseModel):
    user_id: str
    delta:   int
    reason:  str
