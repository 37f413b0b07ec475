"""Tests for the payments service: charge, idempotency, declines and refunds."""
import uuid

import main


def _charge(api, amount_cents=1500, key=None):
    headers = {"Idempotency-Key": key} if key else {}
    return api.post("/charge", json={"amount_cents": amount_cents, "currency": "EUR"}, headers=headers)


def test_health(api):
    r = api.get("/health")
    assert r.status_code == 200 and r.json() == {"ok": True}
    assert r.headers["X-Request-ID"]


def test_charge_returns_transaction_id(api):
    r = _charge(api)
    assert r.status_code == 200
    body = r.json()
    assert body["paid"] is True
    uuid.UUID(body["transaction_id"])


def test_charge_validation_error(api):
    r = api.post("/charge", json={"amount_cents": 0, "currency": "eu"})
    assert r.status_code == 422


def test_idempotent_charge_replays_transaction(api):
    key = f"k-{uuid.uuid4()}"
    first = _charge(api, key=key).json()["transaction_id"]
    second = _charge(api, key=key).json()["transaction_id"]
    assert first == second


def test_idempotency_conflict(api):
    key = f"k-{uuid.uuid4()}"
    assert _charge(api, 1000, key=key).status_code == 200
    r = _charge(api, 2000, key=key)
    assert r.status_code == 409
    assert r.json()["detail"] == "IDEMPOTENCY_CONFLICT"


def test_charge_declined_over_limit(api, monkeypatch):
    monkeypatch.setattr(main, "DECLINE_OVER_CENTS", 1000)
    r = _charge(api, 5000)
    assert r.status_code == 402
    assert r.json()["detail"] == "PAYMENT_DECLINED"


def test_declined_charge_does_not_pin_idempotency_key(api, monkeypatch):
    key = f"k-{uuid.uuid4()}"
    monkeypatch.setattr(main, "DECLINE_OVER_CENTS", 1000)
    assert _charge(api, 5000, key=key).status_code == 402
    monkeypatch.setattr(main, "DECLINE_OVER_CENTS", 0)
    assert _charge(api, 5000, key=key).status_code == 200


def test_refund_marks_transaction(api):
    tx = _charge(api, 1200).json()["transaction_id"]
    r = api.post("/refund", json={"transaction_id": tx, "amount_cents": 1200})
    assert r.status_code == 200
    assert r.json() == {"refunded": True, "transaction_id": tx}

    from repo import PaymentsRepo

    assert PaymentsRepo().get_tx(uuid.UUID(tx)).refunded is True


def test_refund_is_repeatable(api):
    tx = _charge(api, 800).json()["transaction_id"]
    for _ in range(2):
        assert api.post("/refund", json={"transaction_id": tx, "amount_cents": 800}).status_code == 200


def test_refund_unknown_transaction(api):
    r = api.post("/refund", json={"transaction_id": str(uuid.uuid4()), "amount_cents": 100})
    assert r.status_code == 404
    assert r.json()["detail"] == "UNKNOWN_TRANSACTION"


def test_refund_more_than_charged(api):
    tx = _charge(api, 500).json()["transaction_id"]
    r = api.post("/refund", json={"transaction_id": tx, "amount_cents": 501})
    assert r.status_code == 422
    assert r.json()["detail"] == "AMOUNT_EXCEEDS_CHARGE"


def test_duplicate_while_first_charge_in_flight(api):
    from repo import IdempotencyKey, canonical_hash, get_session

    key = f"k-{uuid.uuid4()}"
    with get_session() as s:
        s.add(IdempotencyKey(key=key, request_hash=canonical_hash({"amount_cents": 1500, "currency": "EUR"})))
        s.commit()

    r = _charge(api, 1500, key=key)
    assert r.status_code == 409
    assert r.json()["detail"] == "IN_PROGRESS"
