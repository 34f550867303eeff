"""Field-level protection for the free-text columns of stored rows.

Rows leave the database through ``decode_row`` and enter it through
``encode_row``; the balance math only ever sees plaintext. Values are
signed with itsdangerous so tampered cells are detected on read.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings


logger = logging.getLogger(__name__)

PROTECTED_FIELDS: dict[str, tuple[str, ...]] = {
    "transactions": ("description",),
    "scheduled_transactions": ("description",),
    "savings_goals": ("goal_name",),
}


class FieldCodecError(ValueError):
    pass


class FieldCodec:
    def __init__(self, secret: Optional[str] = None) -> None:
        secret = secret or get_settings().field_secret
        self._serializer = URLSafeSerializer(secret, salt="row-field")

    def encode_field(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return self._serializer.dumps(value)

    def decode_field(self, token: Optional[str]) -> Optional[str]:
        if token is None:
            return None
        try:
            return self._serializer.loads(token)
        except BadSignature as exc:
            raise FieldCodecError("Stored field failed signature check") from exc

    def encode_row(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        encoded = dict(row)
        for field in PROTECTED_FIELDS.get(table, ()):
            if field in encoded:
                encoded[field] = self.encode_field(encoded[field])
        return encoded

    def decode_row(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        decoded = dict(row)
        for field in PROTECTED_FIELDS.get(table, ()):
            if field in decoded:
                try:
                    decoded[field] = self.decode_field(decoded[field])
                except FieldCodecError:
                    logger.error(f"codec: table={table} field={field} bad signature")
                    raise
        return decoded
