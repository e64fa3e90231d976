from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import httpx
import structlog

from services.checkout.app.config import CheckoutConfig
from services.checkout.app.models.cart import Cart, CartAddon, CartLine
from services.checkout.app.models.checkout import PriceBreakdown
from services.checkout.app.models.order import CalculateRequest, OrderPayload
from services.checkout.app.models.payment import (
    ChallengeVerification,
    Currency,
    GatewayResult,
    OrderCreationResult,
    OrderStatusSnapshot,
    PaymentMethod,
    PaymentOutcome,
    StoredInstrument,
)
from services.checkout.app.services.backend_base import (
    BackendAuthError,
    BackendContractError,
    BackendNotFoundError,
    BackendRejectedError,
    BackendUnavailableError,
)

logger = structlog.get_logger(__name__)


class HttpMarketplaceBackend:
    """Marketplace REST backend reached over HTTP.

    Every response is wrapped as ``{"status": bool, "message": str, "data": ...}``. Field
    spelling varies between endpoints (snake_case and camelCase duplicates); everything is
    normalized here so callers only ever see one canonical shape.
    """

    name = "HTTP"

    def __init__(
        self,
        cfg: CheckoutConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = cfg
        self._transport = transport

    @classmethod
    def from_env(cls) -> "HttpMarketplaceBackend":
        return cls(CheckoutConfig.from_env())

    async def get_active_cart(self) -> Cart:
        data = await self._request("GET", "/api/v1/dashboard/user/cart", resource="cart")
        if not data:
            raise BackendNotFoundError("cart")
        with _parsing("cart"):
            return _normalize_cart(data)

    async def recalculate(self, cart_id: int, params: CalculateRequest) -> PriceBreakdown:
        data = await self._request(
            "POST",
            f"/api/v1/dashboard/user/cart/calculate/{cart_id}",
            json=params.model_dump(mode="json", exclude_none=True),
            resource="cart",
        )
        if not isinstance(data, dict):
            raise BackendContractError("calculate returned no price data")
        return _normalize_breakdown(data)

    async def check_coupon(self, shop_id: int, code: str) -> bool:
        data = await self._request(
            "POST",
            "/api/v1/rest/coupons/check",
            json={"shop_id": shop_id, "coupon": code},
            resource="coupon",
        )
        return bool(isinstance(data, dict) and data.get("valid"))

    async def list_payment_methods(self) -> list[PaymentMethod]:
        data = await self._request("GET", "/api/v1/rest/payments", resource="payments")
        with _parsing("payment methods"):
            return [
                PaymentMethod(id=int(raw["id"]), tag=str(raw["tag"]).lower(), input=raw.get("input"))
                for raw in _as_list(data)
                if raw.get("id") is not None and raw.get("tag")
            ]

    async def list_stored_instruments(self) -> list[StoredInstrument]:
        data = await self._request(
            "GET", "/api/v1/dashboard/user/saved-cards", resource="saved cards"
        )
        with _parsing("saved cards"):
            return [_normalize_instrument(raw) for raw in _as_list(data) if raw.get("id")]

    async def list_currencies(self) -> list[Currency]:
        data = await self._request("GET", "/api/v1/rest/currencies", resource="currencies")
        with _parsing("currencies"):
            return [
                Currency(
                    id=int(raw["id"]),
                    rate=str(raw.get("rate") or 1),
                    is_default=bool(raw.get("is_default")),
                    symbol=str(raw.get("symbol") or ""),
                )
                for raw in _as_list(data)
                if raw.get("id") is not None
            ]

    async def create_order(self, payload: OrderPayload) -> OrderCreationResult:
        data = await self._request(
            "POST", "/api/v1/dashboard/user/orders", json=payload.to_wire(), resource="order"
        )
        if not isinstance(data, dict) or data.get("id") is None:
            raise BackendContractError("order creation returned no order id")

        with _parsing("order creation result"):
            return OrderCreationResult(
                order_id=int(data["id"]),
                status=str(data.get("status") or "new"),
                redirect_url=_first(data, "payment_url", "paymentUrl") or None,
                challenge_url=_first(data, "otp_verification_url", "otpVerificationUrl") or None,
                challenge_token=_first(data, "otp_token", "otpToken") or None,
            )

    async def verify_challenge(
        self, order_id: int, code: str, token: str | None = None
    ) -> ChallengeVerification:
        payload: dict[str, Any] = {"otp": code}
        if token:
            payload["otp_token"] = token
        body = await self._request(
            "POST",
            f"/api/v1/dashboard/user/orders/{order_id}/verify-otp",
            json=payload,
            resource="order",
            unwrap=False,
        )
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        verified = data.get("status", body.get("status"))
        message = str(data.get("message") or body.get("message") or "")
        return ChallengeVerification(verified=bool(verified), message=message)

    async def get_order_status(self, order_id: int) -> OrderStatusSnapshot:
        data = await self._request(
            "GET", f"/api/v1/dashboard/user/orders/{order_id}", resource="order"
        )
        if not isinstance(data, dict):
            raise BackendContractError("order details missing")

        transaction = data.get("transaction")
        transaction_status = None
        if isinstance(transaction, dict) and transaction.get("status"):
            transaction_status = str(transaction["status"]).lower()

        with _parsing("order details"):
            return OrderStatusSnapshot(
                order_id=int(data.get("id") or order_id),
                status=str(data.get("status") or "new").lower(),
                transaction_status=transaction_status,
            )

    async def create_transaction(self, order_id: int, payment_id: int) -> int:
        data = await self._request(
            "POST",
            f"/api/v1/payments/order/{order_id}/transactions",
            json={"payment_sys_id": payment_id},
            resource="order",
        )
        if not isinstance(data, dict) or data.get("id") is None:
            raise BackendContractError("transaction creation returned no id")
        with _parsing("transaction id"):
            return int(data["id"])

    async def process_payment(self, tag: str, order_id: int) -> str | None:
        data = await self._request(
            "GET",
            f"/api/v1/dashboard/user/order-{tag}-process",
            params={"order_id": order_id},
            resource="payment process",
        )
        if not isinstance(data, dict):
            return None
        return _first(data, "payment_url", "paymentUrl") or None

    async def process_gateway_result(
        self,
        *,
        order_id: int | None,
        session_id: str | None,
        payment_intent_id: str | None,
    ) -> GatewayResult:
        body = {
            "order_id": order_id,
            "session_id": session_id,
            "payment_intent_id": payment_intent_id,
        }
        data = await self._request(
            "POST",
            "/api/v1/dashboard/user/payment/process-result",
            json={k: v for k, v in body.items() if v is not None},
            resource="payment result",
        )
        if not isinstance(data, dict):
            raise BackendContractError("payment result missing")

        raw_status = str(data.get("status") or "").lower()
        try:
            outcome = PaymentOutcome(raw_status)
        except ValueError:
            outcome = PaymentOutcome.FAILED
            logger.warning("gateway_result_unknown_status", status=raw_status)

        raw_order_id = data.get("order_id")
        with _parsing("payment result"):
            return GatewayResult(
                order_id=int(raw_order_id) if raw_order_id is not None else order_id,
                outcome=outcome,
                message=str(data.get("message") or ""),
                transaction_id=str(data["transaction_id"]) if data.get("transaction_id") else None,
            )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        resource: str,
        unwrap: bool = True,
    ) -> Any:
        query: dict[str, Any] = {"lang": self._cfg.locale}
        if self._cfg.currency_id:
            query["currency_id"] = self._cfg.currency_id
        query.update(params or {})

        headers = {"Accept": "application/json"}
        if self._cfg.api_token:
            headers["Authorization"] = f"Bearer {self._cfg.api_token}"

        try:
            async with httpx.AsyncClient(
                base_url=self._cfg.api_base_url,
                timeout=self._cfg.http_timeout_s,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, params=query, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("backend_unreachable", method=method, path=path, error=type(e).__name__)
            raise BackendUnavailableError(f"{type(e).__name__}: {e}") from e

        if resp.status_code == 401:
            raise BackendAuthError()
        if resp.status_code == 404:
            raise BackendNotFoundError(resource)

        try:
            body = resp.json()
        except ValueError as e:
            if resp.is_error:
                raise BackendRejectedError(None, resp.status_code) from e
            raise BackendContractError(f"non-JSON body from {path}") from e

        if resp.is_error:
            message = _error_message(body)
            logger.info("backend_rejected", path=path, status_code=resp.status_code, message=message)
            raise BackendRejectedError(message, resp.status_code)

        if not isinstance(body, dict):
            raise BackendContractError(f"unexpected body shape from {path}")

        if body.get("status") is False:
            raise BackendRejectedError(_error_message(body), resp.status_code)

        return body.get("data") if unwrap else body


@contextmanager
def _parsing(what: str) -> Iterator[None]:
    # pydantic's ValidationError is a ValueError.
    try:
        yield
    except (KeyError, TypeError, ValueError) as e:
        raise BackendContractError(f"invalid {what}: {e}") from e


def _as_list(data: Any) -> list[dict[str, Any]]:
    if not isinstance(data, list):
        return []
    return [raw for raw in data if isinstance(raw, dict)]


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _error_message(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None

    message = body.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()

    errors = body.get("errors") or body.get("params")
    if isinstance(errors, dict) and errors:
        first = next(iter(errors.values()))
        if isinstance(first, list) and first:
            return str(first[0])
        if isinstance(first, str):
            return first

    return None


def _normalize_breakdown(data: dict[str, Any]) -> PriceBreakdown:
    grand_total = _first(data, "total_price", "totalPrice")
    if grand_total is None:
        raise BackendContractError("calculate returned no total price")

    try:
        return PriceBreakdown(
            subtotal=_first(data, "price"),
            delivery_fee=_first(data, "delivery_fee", "deliveryFee"),
            service_fee=_first(data, "service_fee", "serviceFee"),
            tax=_first(data, "tax", "total_tax", "totalTax"),
            discount=_first(data, "discount", "total_discount", "totalDiscount"),
            coupon_discount=_first(data, "coupon_price", "couponPrice"),
            grand_total=grand_total,
        )
    except ValueError as e:
        raise BackendContractError(f"invalid price breakdown: {e}") from e


def _normalize_cart(data: dict[str, Any]) -> Cart:
    if data.get("id") is None or data.get("shop_id") is None:
        raise BackendContractError("cart missing id or shop_id")

    lines: list[CartLine] = []
    for user_cart in _as_list(data.get("user_carts")):
        details = user_cart.get("cart_details") or user_cart.get("cartDetails") or []
        for raw in _as_list(details):
            stock = raw.get("stock") if isinstance(raw.get("stock"), dict) else {}
            addons = [
                CartAddon(
                    stock_id=int(addon["stock_id"]),
                    quantity=max(1, int(addon.get("quantity") or 1)),
                    unit_price=addon.get("price") or 0,
                )
                for addon in _as_list(raw.get("addons"))
                if addon.get("stock_id") is not None
            ]
            lines.append(
                CartLine(
                    id=int(raw["id"]),
                    stock_id=stock.get("id"),
                    quantity=max(1, int(raw.get("quantity") or 1)),
                    unit_price=raw.get("price") or 0,
                    addons=addons,
                )
            )

    shop = data.get("shop") if isinstance(data.get("shop"), dict) else {}
    return Cart(
        id=int(data["id"]),
        shop_id=int(data["shop_id"]),
        lines=lines,
        shop_min_amount=shop.get("min_amount") or 0,
        server_total=data.get("total_price"),
    )


def _normalize_instrument(raw: dict[str, Any]) -> StoredInstrument:
    return StoredInstrument(
        id=str(raw["id"]),
        payment_method_id=str(raw.get("payment_method_id") or ""),
        brand=str(raw.get("brand") or ""),
        last_four=str(raw.get("last_four") or ""),
        exp_month=_maybe_int(raw.get("exp_month")),
        exp_year=_maybe_int(raw.get("exp_year")),
        is_default=bool(raw.get("is_default")),
    )


def _maybe_int(value: Any) -> int | None:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None
