import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from postgrest.exceptions import APIError
from pydantic import BaseModel, StrictInt

from storefront.utils.security import require_admin
from . import service as orders_service
from .service import OrderActionError, OrderNotFound

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/api/orders", tags=["Admin"])


class OrderStatusIn(BaseModel):
    status: str


class RefundIn(BaseModel):
    # centimes; absent = remboursement total
    amount: Optional[StrictInt] = None


def _action_error(e: OrderActionError) -> JSONResponse:
    return JSONResponse({"success": False, "error": e.message}, status_code=e.status_code)


# module storefront.orders.views
@router.get("")
def admin_list_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = Query(default=None, alias="paymentStatus"),
    q: Optional[str] = None,
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: dict = Depends(require_admin),
):
    try:
        items = orders_service.list_orders(
            status=status,
            payment_status=payment_status,
            search=q,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
    except OrderActionError as e:
        return _action_error(e)
    except APIError:
        logger.exception("orders.views.admin_list_orders failed")
        raise HTTPException(status_code=500, detail="Failed to fetch orders")
    return JSONResponse({"items": items})


@router.get("/stats")
def admin_order_stats(user: dict = Depends(require_admin)):
    try:
        return JSONResponse(orders_service.order_stats())
    except APIError:
        logger.exception("orders.views.admin_order_stats failed")
        raise HTTPException(status_code=500, detail="Failed to compute order stats")


@router.get("/{order_id}")
def admin_get_order(order_id: str, user: dict = Depends(require_admin)):
    try:
        return JSONResponse(orders_service.get_order(order_id))
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")


@router.patch("/{order_id}/status")
def admin_update_order_status(order_id: str, payload: OrderStatusIn, user: dict = Depends(require_admin)):
    """Changement de statut manuel (valeur définie, différente de l'actuelle)."""
    try:
        order = orders_service.update_order_status(order_id, payload.status)
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderActionError as e:
        return _action_error(e)
    return JSONResponse({
        "success": True,
        "message": "Order status updated successfully",
        "status": order.get("status"),
    })


@router.post("/{order_id}/refund")
def admin_refund_order(order_id: str, payload: Optional[RefundIn] = None, user: dict = Depends(require_admin)):
    """
    Remboursement Stripe (total si amount absent, partiel sinon).
    - 400: montant invalide ou supérieur au total (aucun appel Stripe)
    - 502: refus Stripe, message brut renvoyé à l'admin
    """
    amount = payload.amount if payload else None
    try:
        refund = orders_service.refund_order(order_id, amount)
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderActionError as e:
        return _action_error(e)
    message = "Full refund processed successfully" if refund["full"] else "Partial refund processed successfully"
    return JSONResponse({"success": True, "message": message, "refund": refund})
