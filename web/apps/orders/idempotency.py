"""Idempotency keys for order creation.

A client may send ``Idempotency-Key`` with ``POST /api/orders/``. The first
request with a key reserves a record and, once the placement finishes,
stores the response status and body. Retries with the same key and payload
get the stored response back without placing the order again; reusing the
key with a different payload is a conflict.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey


class IdempotencyConflict(ValueError):
    """Same key, different payload."""

    def __init__(self):
        super().__init__("IDEMPOTENCY_CONFLICT")


def request_hash(payload: dict) -> str:
    """Stable SHA-256 of a JSON payload (sorted keys, compact separators)."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, payload: dict):
    """Get-or-create the idempotency record for ``key``.

    The create path runs in a nested savepoint so an IntegrityError only
    rolls back that block; an existing record is re-read under a row lock.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``.

    Raises:
        IdempotencyConflict: If the key exists with a different payload hash.
    """
    h = request_hash(payload)

    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise IdempotencyConflict()
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None) -> None:
    """Store the final response so later retries can replay it."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order"])
