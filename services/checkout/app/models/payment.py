from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

CASH_TAG = "cash"
WALLET_TAG = "wallet"

# Methods that settle without any gateway involvement.
DIRECT_SETTLEMENT_TAGS = frozenset({CASH_TAG, WALLET_TAG})


class PaymentMethod(BaseModel):
    id: int
    tag: str
    input: int | None = None


class StoredInstrument(BaseModel):
    id: str
    payment_method_id: str = ""
    brand: str = ""
    last_four: str = ""
    exp_month: int | None = None
    exp_year: int | None = None
    is_default: bool = False

    def is_expired(self, today: date | None = None) -> bool:
        if self.exp_month is None or self.exp_year is None:
            return False
        today = today or date.today()
        year = self.exp_year + 2000 if self.exp_year < 100 else self.exp_year
        return (year, self.exp_month) < (today.year, today.month)

    @property
    def masked(self) -> str:
        return f"{self.brand.title() or 'Card'} **** {self.last_four}"


class PaymentSelection(BaseModel):
    method: PaymentMethod | None = None
    use_new_instrument: bool = True
    instrument_id: str | None = None

    @property
    def uses_stored_instrument(self) -> bool:
        return not self.use_new_instrument


class OrderCreationResult(BaseModel):
    order_id: int
    status: str = "new"
    redirect_url: str | None = None
    challenge_url: str | None = None
    challenge_token: str | None = None

    @property
    def has_challenge(self) -> bool:
        return bool(self.challenge_url or self.challenge_token)


class OrderStatusSnapshot(BaseModel):
    order_id: int
    status: str
    transaction_status: str | None = None


class PaymentOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    CANCELLED = "cancelled"


class GatewayResult(BaseModel):
    order_id: int | None = None
    outcome: PaymentOutcome
    message: str = ""
    transaction_id: str | None = None


class ChallengeVerification(BaseModel):
    verified: bool
    message: str = ""


class PendingOrderMarker(BaseModel):
    order_id: int
    created_at: datetime

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()


class Currency(BaseModel):
    id: int
    rate: Decimal = Field(default=Decimal("1"), gt=0)
    is_default: bool = False
    symbol: str = ""


class ChallengeChannel(str, Enum):
    # Code is appended to the gateway's own completion URL.
    GATEWAY_URL = "gateway_url"
    # Code is verified through the backend endpoint.
    BACKEND = "backend"


@dataclass(slots=True)
class OtpChallenge:
    """Transient one-time-code challenge. Never persisted."""

    order_id: int
    channel: ChallengeChannel
    verification_url: str | None = None
    # Opaque token issued with a backend-verified challenge.
    token: str | None = None
    code: str = ""
    error: str | None = None
    active: bool = True
