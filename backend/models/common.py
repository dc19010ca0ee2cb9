from enum import Enum


class UserRole(str, Enum):
    CLIENT     = "client"
    STAFF      = "staff"       # barista / caissier qui scanne les codes
    ADMIN      = "admin"
    SUPERADMIN = "superadmin"


class Tier(str, Enum):
    BRONZE   = "Bronze"
    SILVER   = "Silver"
    GOLD     = "Gold"
    PLATINUM = "Platinum"


class TransactionKind(str, Enum):
    EARNED        = "earned"
    REDEEMED      = "redeemed"
    BONUS         = "bonus"
    ADJUSTMENT    = "adjustment"
    TIER_DISCOUNT = "tier_discount"
    FIRST_TIME    = "first_time_discount"


class DiscountType(str, Enum):
    FLAT       = "flat"
    PERCENTAGE = "percentage"
    POINTS     = "points"
    FIRST_TIME = "first_time"
    NONE       = "none"


class CodeType(str, Enum):
    QR      = "qr"
    BARCODE = "barcode"
