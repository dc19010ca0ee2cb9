"""
Router fidélité : solde, QR / code-barres client, scan et utilisation des points au comptoir.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request

from core.dependencies import get_current_user, get_loyalty_service, require_admin, require_staff
from core.exceptions import bad_request_exception
from core.limiter import limiter
from core.utils import mask_phone
from models.loyalty import (
    AdjustRequest,
    AwardRequest,
    LoyaltyAnalytics,
    LoyaltyProfile,
    LoyaltyTransaction,
    QuoteRequest,
    ScanRedeemRequest,
    ScanRequest,
)
from services.loyalty_service import LoyaltyService

router = APIRouter()


# ── Client ────────────────────────────────────────────────────────────────────
@router.get("/me", response_model=LoyaltyProfile, summary="Mon profil fidélité")
async def get_my_profile(
    current_user: dict = Depends(get_current_user),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    return LoyaltyProfile(**await service.get_profile(current_user["user_id"]))


@router.get("/me/transactions", summary="Historique des points")
async def get_my_transactions(
    limit: int = 50,
    current_user: dict = Depends(get_current_user),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    if not 1 <= limit <= 200:
        raise bad_request_exception("limit doit être entre 1 et 200")
    txs = await service.list_transactions(current_user["user_id"], limit)
    return {"transactions": [LoyaltyTransaction(**t) for t in txs]}


@router.get("/me/stats", summary="Statistiques fidélité")
async def get_my_stats(
    current_user: dict = Depends(get_current_user),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    return await service.get_stats(current_user["user_id"])


@router.post("/me/qr-token", summary="Générer mon QR fidélité (15 min)")
async def issue_my_qr_token(
    current_user: dict = Depends(get_current_user),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    return await service.issue_qr_token(current_user["user_id"])


@router.post("/me/barcode", summary="Générer mon code-barres fidélité (15 min)")
async def issue_my_barcode(
    current_user: dict = Depends(get_current_user),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    return await service.issue_barcode(current_user["user_id"])


@router.post("/me/quote", summary="Meilleure remise pour un montant")
async def quote_my_discount(
    body: QuoteRequest,
    current_user: dict = Depends(get_current_user),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    return await service.quote(current_user["user_id"], body.order_amount)


# ── Staff ─────────────────────────────────────────────────────────────────────
@router.post("/scan/resolve", summary="Identifier le client d'un code scanné")
@limiter.limit("30/minute")
async def resolve_scanned_code(
    request: Request,
    body: ScanRequest,
    _staff=Depends(require_staff),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    profile = await service.lookup_scanned(body.code, body.code_type)
    return {
        "user_id": profile["user_id"],
        "points":  profile.get("points", 0),
        "tier":    profile.get("tier"),
        "phone":   mask_phone(profile.get("phone") or ""),
    }


@router.post("/scan/redeem", summary="Appliquer la remise fidélité d'un client scanné")
@limiter.limit("30/minute")
async def redeem_scanned_code(
    request: Request,
    body: ScanRedeemRequest,
    staff: dict = Depends(require_staff),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    return await service.redeem_scanned(
        body.code,
        body.order_amount,
        code_type=body.code_type,
        order_id=body.order_id,
        staff_id=staff["user_id"],
        points_to_redeem=body.points_to_redeem,
    )


@router.post("/award", summary="Créditer les points d'une commande")
async def award_order_points(
    body: AwardRequest,
    staff: dict = Depends(require_staff),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    return await service.award_points(
        body.user_id,
        body.order_amount,
        order_id=body.order_id,
        is_festival=body.is_festival,
        created_by=staff["user_id"],
    )


# ── Admin ─────────────────────────────────────────────────────────────────────
@router.post("/admin/adjust", summary="Ajuster le solde d'un client (admin)")
async def adjust_points(
    body: AdjustRequest,
    admin: dict = Depends(require_admin),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    return await service.adjust_points(body.user_id, body.delta, body.reason, created_by=admin["user_id"])


@router.post("/admin/bulk-adjust", summary="Ajustements en masse (admin)")
async def bulk_adjust_points(
    body: list[AdjustRequest],
    admin: dict = Depends(require_admin),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    return await service.bulk_adjust(body, created_by=admin["user_id"])


@router.get("/admin/analytics", response_model=LoyaltyAnalytics, summary="Tableau de bord fidélité (admin)")
async def loyalty_analytics(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    _admin=Depends(require_admin),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    if start and end and start >= end:
        raise bad_request_exception("start doit précéder end")
    return await service.get_analytics(start, end)


@router.get("/admin/{user_id}/reconcile", summary="Contrôle solde / journal (admin)")
async def reconcile_points(
    user_id: str,
    _admin=Depends(require_admin),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    return await service.reconcile(user_id)
