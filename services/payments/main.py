"""Payments service API built with FastAPI.

This module exposes endpoints to check service health, charge a payment and
refund (reverse) a previous charge. Validation is performed with Pydantic
models, while persistence is delegated to the SQLAlchemy-backed repository
in ``repo.PaymentsRepo``.

Charges above ``PAYMENTS_DECLINE_OVER_CENTS`` (disabled when 0) are
declined with HTTP 402, which order-side clients treat as a business
refusal rather than an outage.
"""

import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field, constr
from pythonjsonlogger import jsonlogger
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError

from repo import IdempotencyKey, PaymentsRepo, RefundError, canonical_hash, engine, get_session, init_db

logger = logging.getLogger("payments")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

DECLINE_OVER_CENTS = int(os.getenv("PAYMENTS_DECLINE_OVER_CENTS", "0"))
DB_WAIT_SECS = float(os.getenv("PAYMENTS_DB_WAIT_SECS", "30"))


def _wait_for_db(deadline_secs: float) -> None:
    deadline = time.time() + deadline_secs
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            return
        except OperationalError:
            if time.time() > deadline:
                raise
            time.sleep(1)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    _wait_for_db(DB_WAIT_SECS)
    init_db()
    yield


app = FastAPI(title="Payments Service", lifespan=lifespan)

Currency = constr(pattern=r"^[A-Z]{3}$")


class ChargeRequest(BaseModel):
    """Request body for the charge endpoint.

    Attributes:
        amount_cents: Positive payment amount in minor currency units (cents).
        currency: Three-letter ISO currency code (e.g., EUR, USD).
    """
    amount_cents: int = Field(gt=0)
    currency: Currency


class ChargeResponse(BaseModel):
    paid: bool
    transaction_id: uuid.UUID


class RefundRequest(BaseModel):
    transaction_id: uuid.UUID
    amount_cents: int = Field(gt=0)


class RefundResponse(BaseModel):
    refunded: bool
    transaction_id: uuid.UUID


@app.get("/health")
def health():
    return {"ok": True}


def _create_charge(req: ChargeRequest) -> uuid.UUID:
    if DECLINE_OVER_CENTS and req.amount_cents > DECLINE_OVER_CENTS:
        logger.warning("charge declined", extra={"amount_cents": req.amount_cents, "limit": DECLINE_OVER_CENTS})
        raise HTTPException(status_code=402, detail="PAYMENT_DECLINED")
    tx_id = PaymentsRepo().create_tx(amount_cents=req.amount_cents, currency=req.currency, paid=True)
    if not tx_id:
        raise HTTPException(status_code=500, detail="TX_NOT_CREATED")
    return tx_id


@app.post("/charge", response_model=ChargeResponse)
def charge(
    req: ChargeRequest,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Charge a payment with optional idempotency.

    When an ``Idempotency-Key`` header is provided, duplicate requests with
    the same payload are processed at most once: the first request creates
    the transaction and stores the association with the key, and retries
    with an identical payload return the same transaction_id. Reusing the
    key with a different payload responds with HTTP 409.

    Raises:
        HTTPException: 402 when the charge is declined; 409 on an
            idempotency conflict or a duplicate still in
            progress (``IN_PROGRESS``); 500 when creation or lookup fails.
    """
    if not idempotency_key:
        return ChargeResponse(paid=True, transaction_id=_create_charge(req))

    payload_hash = canonical_hash(req.model_dump())
    with get_session() as s:
        try:
            s.add(IdempotencyKey(key=idempotency_key, request_hash=payload_hash))
            s.commit()
        except IntegrityError:
            s.rollback()
            rec = s.execute(
                select(IdempotencyKey).where(IdempotencyKey.key == idempotency_key).with_for_update()
            ).scalars().first()
            if not rec:
                raise HTTPException(status_code=500, detail="IDEMPOTENCY_LOOKUP_ERROR")
            if rec.request_hash != payload_hash:
                raise HTTPException(status_code=409, detail="IDEMPOTENCY_CONFLICT")
            if rec.transaction_id:
                return ChargeResponse(paid=True, transaction_id=rec.transaction_id)
            # another request with this key has not finished charging yet
            raise HTTPException(status_code=409, detail="IN_PROGRESS")

        try:
            tx_id = _create_charge(req)
        except HTTPException:
            # a declined attempt must not pin the key
            s.delete(s.get(IdempotencyKey, idempotency_key))
            s.commit()
            raise

        rec = s.get(IdempotencyKey, idempotency_key)
        rec.transaction_id = tx_id
        s.add(rec)
        s.commit()
        return ChargeResponse(paid=True, transaction_id=tx_id)


@app.post("/refund", response_model=RefundResponse)
def refund(req: RefundRequest):
    """Reverse a previous charge.

    Refunding an already refunded transaction returns 200 again.

    Raises:
        HTTPException: 404 for an unknown transaction, 409 when it was never
            paid, 422 when the amount exceeds the original charge.
    """
    try:
        tx = PaymentsRepo().refund(req.transaction_id, req.amount_cents)
    except RefundError as e:
        logger.warning("refund rejected", extra={"transaction_id": str(req.transaction_id), "reason": e.code})
        raise HTTPException(status_code=e.status_code, detail=e.code)
    logger.info("charge refunded", extra={"transaction_id": str(tx.id), "amount_cents": req.amount_cents})
    return RefundResponse(refunded=True, transaction_id=tx.id)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
