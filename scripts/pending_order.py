from __future__ import annotations

import argparse
import os

from services.checkout.app.db.init_db import init_db
from services.checkout.app.services.pending_store import SqlPendingOrderStore


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Inspect or clear the pending-order marker left before a gateway redirect"
    )
    parser.add_argument("action", choices=["show", "clear"])
    parser.add_argument(
        "--ttl-s",
        type=int,
        default=int(os.getenv("CHECKOUT_PENDING_ORDER_TTL_S", "3600")),
        help="Staleness window in seconds (default: 3600)",
    )

    args = parser.parse_args()

    init_db()
    store = SqlPendingOrderStore(ttl_s=args.ttl_s)

    if args.action == "clear":
        store.clear()
        print("Pending-order marker cleared.")
        return 0

    marker = store.get()
    if marker is None:
        print("No pending-order marker.")
        return 0

    stale = " (stale)" if store.is_stale(marker) else ""
    print(f"order_id={marker.order_id} created_at={marker.created_at.isoformat()}{stale}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
