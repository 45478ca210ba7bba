from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Attachment:
    """Opaque reference to externally stored media."""

    name: str
    mime_type: str
    size: int
    url: str
