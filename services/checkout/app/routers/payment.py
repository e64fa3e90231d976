from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from packages.shared.schemas.checkout_v1 import PaymentResultV1
from services.checkout.app.checkout.settlement import SettlementResumer
from services.checkout.app.checkout.state import checkout_state
from services.checkout.app.config import CheckoutConfig
from services.checkout.app.services.backend_factory import get_backend
from services.checkout.app.services.pending_store import SqlPendingOrderStore

router = APIRouter(prefix="/api/payment")

# Gateways are inconsistent about how they name the order id.
ORDER_ID_KEYS = ("o_id", "order_id", "orderId")


def _raise_http_error(e: Exception) -> None:
    if isinstance(e, SQLAlchemyError):
        raise HTTPException(status_code=503, detail="Pending-order storage unavailable") from e

    raise HTTPException(status_code=500, detail="Internal Server Error") from e


def _param(params: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = params.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _order_id(params: dict[str, Any]) -> int | None:
    raw = _param(params, *ORDER_ID_KEYS)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid order id: {raw!r}") from e


async def _params(request: Request) -> dict[str, Any]:
    params: dict[str, Any] = dict(request.query_params)
    if request.method == "POST" and request.headers.get("content-type", "").startswith(
        "application/json"
    ):
        try:
            body = await request.json()
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Malformed JSON body") from e
        if isinstance(body, dict):
            # Query string wins over the body.
            params = {**body, **params}
    return params


async def _reconcile(request: Request, status_hint: str) -> PaymentResultV1:
    params = await _params(request)
    order_id = _order_id(params)

    try:
        backend = get_backend()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    cfg = CheckoutConfig.from_env()
    resumer = SettlementResumer(
        backend, SqlPendingOrderStore(ttl_s=cfg.pending_order_ttl_s), checkout_state
    )

    try:
        return await resumer.reconcile(
            order_id=order_id,
            status_hint=_param(params, "status") or status_hint,
            session_id=_param(params, "session_id"),
            payment_intent_id=_param(params, "payment_intent_id"),
            error=_param(params, "error"),
        )
    except Exception as e:
        _raise_http_error(e)


@router.api_route("/success", methods=["GET", "POST"], response_model=PaymentResultV1)
async def payment_success(request: Request) -> PaymentResultV1:
    return await _reconcile(request, "success")


@router.api_route("/failed", methods=["GET", "POST"], response_model=PaymentResultV1)
async def payment_failed(request: Request) -> PaymentResultV1:
    return await _reconcile(request, "failed")


@router.api_route("/callback", methods=["GET", "POST"], response_model=PaymentResultV1)
async def payment_callback(request: Request) -> PaymentResultV1:
    return await _reconcile(request, "callback")
