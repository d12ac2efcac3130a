"""
Signed pass tokens.

A token is ``passId:expiryMillis.signature`` where the signature is the
first 16 hex chars of HMAC-SHA256(secret, "passId:expiryMillis"). The token
is embedded in the QR payload next to plaintext fields that are only there
for display; provenance is always established through ``verify``.
"""
from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigError
from .helpers import now_ms as _now_ms

DAY_MS = 24 * 60 * 60 * 1000
SIGNATURE_LEN = 16

# verify() error codes
MALFORMED = "MalformedToken"
EXPIRED = "Expired"
SIGNATURE_MISMATCH = "SignatureMismatch"


@dataclass(frozen=True)
class TokenCheck:
    valid: bool
    pass_id: Optional[str] = None
    error: Optional[str] = None


class QRSigner:
    def __init__(self, secret: str):
        if not secret:
            raise ConfigError(
                "QR_SECRET_KEY is not set; refusing to sign or verify passes"
            )
        self._key = secret.encode()

    def _signature(self, payload: str) -> str:
        mac = hmac.new(self._key, payload.encode(), hashlib.sha256)
        return mac.hexdigest()[:SIGNATURE_LEN]

    def sign(self, pass_id: str, expiry_days: int = 30,
             now_ms: Optional[int] = None) -> str:
        now = _now_ms() if now_ms is None else now_ms
        payload = f"{pass_id}:{now + expiry_days * DAY_MS}"
        return f"{payload}.{self._signature(payload)}"

    def verify(self, token: str, now_ms: Optional[int] = None) -> TokenCheck:
        if not token or not isinstance(token, str):
            return TokenCheck(False, error=MALFORMED)

        parts = token.split(".")
        if len(parts) != 2:
            return TokenCheck(False, error=MALFORMED)
        payload, signature = parts

        payload_parts = payload.split(":")
        if len(payload_parts) != 2:
            return TokenCheck(False, error=MALFORMED)
        pass_id, expiry_str = payload_parts

        # signature first, so a tampered expiry reads as tampering
        expected = self._signature(payload).encode()
        if not hmac.compare_digest(expected, signature.encode()):
            return TokenCheck(False, error=SIGNATURE_MISMATCH)

        now = _now_ms() if now_ms is None else now_ms
        if not expiry_str.isdecimal() or now > int(expiry_str):
            return TokenCheck(False, error=EXPIRED)

        return TokenCheck(True, pass_id=pass_id)

    def qr_payload(self, pass_id: str, user_id: str, pass_type: str,
                   expiry_days: int = 30) -> str:
        return json.dumps({
            "passId": pass_id,
            "userId": user_id,
            "passType": pass_type,
            "token": self.sign(pass_id, expiry_days),
        })

    def read_qr_payload(self, qr_data: str) -> TokenCheck:
        # scanners hand us either the JSON payload or the bare token
        token = qr_data
        try:
            parsed = json.loads(qr_data)
        except (TypeError, ValueError):
            parsed = None
        if isinstance(parsed, dict):
            token = parsed.get("token")
        return self.verify(token)
