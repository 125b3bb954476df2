# Overview: Transaction code allocation.

from __future__ import annotations

import secrets
import time

SALE_PREFIX = "TXN"
VOID_PREFIX = "VOID"
REFUND_PREFIX = "RFND"


def generate_transaction_code(prefix: str = SALE_PREFIX) -> str:
    """
    Human-readable, unique, unguessable transaction code.

    Format: <PREFIX><epoch millis><10 random hex chars>, e.g.
    TXN1760769600123A1B2C3D4E5. The random part carries 40 bits of
    entropy so the code can be handed to the payment gateway as the
    correlation reference without being enumerable.
    """
    return f"{prefix}{int(time.time() * 1000)}{secrets.token_hex(5).upper()}"
