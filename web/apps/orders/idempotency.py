"""Idempotency utilities for safely handling duplicate checkout requests.

A checkout that times out on the client side may or may not have
persisted an order. When the client sends an ``Idempotency-Key`` header,
the first request is processed and its response stored; retries with the
same key and payload replay that response instead of checking out again.
Keys are scoped per user so two users cannot collide on a key.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey


def _hash(payload: dict) -> str:
    """Compute a stable SHA-256 hash for a JSON-serializable payload.

    The payload is serialized with sorted keys and compact separators to
    ensure a deterministic representation before hashing.
    """
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def scoped_key(user_id: int, key: str) -> str:
    return f"{user_id}:{key}"


@transaction.atomic
def get_or_create_idempotent(user_id: int, key: str, payload: dict):
    """Get-or-create an idempotency record for the given key and payload.

    Behavior:
        - First request with a new key: create a record and return
          (False, rec); the caller finalizes it with the response.
        - Same key and same payload again: lock and return (True, rec).
        - Same key with a different payload: raise
          ValueError("IDEMPOTENCY_CONFLICT").

    Args:
        user_id: Caller the key belongs to.
        key: Client-provided idempotency key.
        payload: Request payload used to compute the request hash.

    Returns:
        tuple[bool, IdempotencyKey]: (existing, rec).
    """
    h = _hash(payload)
    full_key = scoped_key(user_id, key)

    try:
        # Nested savepoint: if IntegrityError occurs, only this block is rolled back.
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                key=full_key, request_hash=h, response_status=0, response_body={}
            )
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=full_key)
        if rec.request_hash != h:
            raise ValueError("IDEMPOTENCY_CONFLICT")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Persist the final response for an idempotent request.

    Server-side failures (5xx) are not stored: the record is dropped so a
    retry with the same key runs the checkout again.
    """
    if status_code >= 500:
        rec.delete()
        return
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])
