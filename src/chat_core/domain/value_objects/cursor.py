"""Message timeline cursor.

Encoded form: base64("<iso-timestamp>|<seq>")

Cursors order by the store-assigned seq only; the timestamp is informational.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, slots=True, order=True)
class MessageCursor:
    created_at: datetime = field(compare=False)
    seq: int

    def encode(self) -> str:
        raw = f"{self.created_at.isoformat()}|{self.seq}"
        cursor = base64.urlsafe_b64encode(raw.encode()).decode()
        return cursor.rstrip("=")

    @classmethod
    def decode(cls, cursor: str) -> MessageCursor:
        # Restore base64 padding if it was stripped
        cursor += "=" * ((4 - len(cursor) % 4) % 4)
        raw = base64.urlsafe_b64decode(cursor.encode()).decode()
        ts_str, seq_str = raw.split("|", 1)
        return cls(created_at=datetime.fromisoformat(ts_str), seq=int(seq_str))
