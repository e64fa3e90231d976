from __future__ import annotations

from datetime import datetime, timezone

import structlog

from services.checkout.app.db.database import db_session
from services.checkout.app.db.models import PendingOrder
from services.checkout.app.models.payment import PendingOrderMarker

logger = structlog.get_logger(__name__)

PENDING_ORDER_SLOT = "pending_order"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class SqlPendingOrderStore:
    """Durable single-key store for the pending-order marker.

    Every call commits before returning, so a marker written here survives the full page
    navigation to the payment gateway. Storage errors propagate to the caller.
    """

    def __init__(self, ttl_s: int = 3600) -> None:
        self.ttl_s = ttl_s

    def set(self, order_id: int, *, now: datetime | None = None) -> PendingOrderMarker:
        created_at = now or _utcnow()
        with db_session() as db, db.begin():
            row = db.get(PendingOrder, PENDING_ORDER_SLOT)
            if row is None:
                db.add(PendingOrder(slot=PENDING_ORDER_SLOT, order_id=order_id, created_at=created_at))
            else:
                row.order_id = order_id
                row.created_at = created_at

        logger.info("pending_order_written", order_id=order_id)
        return PendingOrderMarker(order_id=order_id, created_at=created_at)

    def get(self) -> PendingOrderMarker | None:
        with db_session() as db:
            row = db.get(PendingOrder, PENDING_ORDER_SLOT)
            if row is None:
                return None
            return PendingOrderMarker(order_id=row.order_id, created_at=_aware(row.created_at))

    def clear(self) -> None:
        with db_session() as db, db.begin():
            row = db.get(PendingOrder, PENDING_ORDER_SLOT)
            if row is not None:
                db.delete(row)

        logger.info("pending_order_cleared")

    def take(self, *, now: datetime | None = None) -> PendingOrderMarker | None:
        """Read and clear the marker in one transaction.

        Returns None when there is no marker or when it is older than the staleness window.
        A stale marker is still cleared.
        """

        with db_session() as db, db.begin():
            row = db.get(PendingOrder, PENDING_ORDER_SLOT)
            if row is None:
                logger.info("pending_order_missing")
                return None
            marker = PendingOrderMarker(order_id=row.order_id, created_at=_aware(row.created_at))
            db.delete(row)

        if self.is_stale(marker, now=now):
            logger.warning(
                "pending_order_stale",
                order_id=marker.order_id,
                age_s=round(marker.age_seconds(now or _utcnow())),
            )
            return None

        logger.info("pending_order_read", order_id=marker.order_id)
        return marker

    def is_stale(self, marker: PendingOrderMarker, *, now: datetime | None = None) -> bool:
        return marker.age_seconds(now or _utcnow()) > self.ttl_s
