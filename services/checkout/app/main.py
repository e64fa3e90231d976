"""Checkout service entrypoint."""

from fastapi import FastAPI

from services.checkout.app.db.init_db import init_db
from services.checkout.app.logging_config import configure_logging
from services.checkout.app.routers.payment import router as payment_router

app = FastAPI(title="Checkout API")

app.include_router(payment_router)


@app.on_event("startup")
def _startup() -> None:
    configure_logging()
    init_db()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
