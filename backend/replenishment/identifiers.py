"""Identifier generation for orders, transfer orders, shipments and tracking numbers."""

import secrets
import string
import time
import uuid

_TRACKING_ALPHABET = string.ascii_uppercase + string.digits


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def _suffix(length: int) -> str:
    return uuid.uuid4().hex[:length].upper()


def new_replenishment_id() -> str:
    return f"REP-{_epoch_ms()}-{_suffix(8)}"


def new_transfer_order_id() -> str:
    return f"TO-{_epoch_ms()}-{_suffix(6)}"


def new_shipment_id() -> str:
    return f"SHP-{_epoch_ms()}-{_suffix(6)}"


def new_tracking_number() -> str:
    return "1Z" + "".join(secrets.choice(_TRACKING_ALPHABET) for _ in range(13))
