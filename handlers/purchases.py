"""
Purchase routes: single and cart checkout, history, checks and admin validation
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from handlers.common import get_purchase_service, ok, read_json, require_int
from middleware.auth_security import ensure_self_or_admin, get_current_user, require_admin
from models import User
from services.purchase_service import PurchaseLine, PurchaseService
from utils.datetime_helpers import to_iso
from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/purchases", tags=["purchases"])


@router.post("")
async def purchase_project(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    purchases: PurchaseService = Depends(get_purchase_service),
):
    body = await read_json(request)
    if body.get("projectId") is None or not body.get("paymentMethod") or body.get("amount") is None:
        raise ValidationError("projectId, paymentMethod and amount are required")

    data = await purchases.purchase_single(
        session,
        user,
        project_id=require_int(body["projectId"], "projectId"),
        amount=body["amount"],
        payment_method=body["paymentMethod"],
        currency=body.get("currency"),
    )
    return ok(data, "Purchase created successfully", status_code=201)


@router.post("/cart")
async def purchase_cart(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    purchases: PurchaseService = Depends(get_purchase_service),
):
    body = await read_json(request)
    items = body.get("projects")
    if not isinstance(items, list) or not items or not body.get("paymentMethod"):
        raise ValidationError("projects (non-empty list) and paymentMethod are required")

    lines = []
    for item in items:
        if not isinstance(item, dict) or item.get("projectId") is None or item.get("amount") is None:
            raise ValidationError("Each project needs projectId and amount")
        lines.append(PurchaseLine(project_id=require_int(item["projectId"], "projectId"), amount=item["amount"]))

    data = await purchases.purchase_cart(
        session, user, lines, payment_method=body["paymentMethod"], currency=body.get("currency"),
    )
    return ok(data, f"{data['totalProjects']} project(s) purchased successfully", status_code=201)


@router.get("/stats")
async def purchase_stats(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    purchases: PurchaseService = Depends(get_purchase_service),
):
    return ok(await purchases.buyer_stats(session, user.id))


@router.post("/validate")
async def validate_payment(
    request: Request,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    purchases: PurchaseService = Depends(get_purchase_service),
):
    body = await read_json(request)
    if body.get("saleId") is None or not isinstance(body.get("approved"), bool):
        raise ValidationError("saleId and approved (boolean) are required")

    sale = await purchases.validate_payment(
        session,
        sale_id=require_int(body["saleId"], "saleId"),
        approved=body["approved"],
        payment_receipt=body.get("paymentReceipt"),
        admin_id=admin.id,
    )
    data = {
        "saleId": sale.id,
        "saleCode": sale.sale_code,
        "paymentStatus": sale.payment_status,
        "deliveryStatus": sale.delivery_status,
        "paidAt": to_iso(sale.paid_at),
    }
    await session.commit()
    return ok(data, "Payment approved" if body["approved"] else "Payment rejected")


@router.get("/user/{user_id}")
async def purchase_history(
    user_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    purchases: PurchaseService = Depends(get_purchase_service),
):
    ensure_self_or_admin(user, user_id)
    return ok(await purchases.purchase_history(session, user_id))


@router.get("/check/{project_id}")
async def check_purchase(
    project_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    purchases: PurchaseService = Depends(get_purchase_service),
):
    return ok(await purchases.check_purchase(session, user.id, project_id))
