"""Signed authentication tokens presented to the broker."""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Sequence

_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _canonical_json(data: dict) -> str:
    text = json.dumps(data, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
    return "".join(_ESCAPES.get(ch, ch) for ch in text)


@dataclass
class Token:
    """Identity of a module: brand, module name, its events and a timestamp."""

    brand: str = ""
    module: str = ""
    subs: Sequence[str] | None = None
    pubs: Sequence[str] | None = None
    timestamp: str = ""

    def generate_hmac(self, secret: str) -> str:
        """Return the hex HMAC-SHA256 of the token's canonical JSON form."""
        data = {
            "module": self.module,
            "brand": self.brand,
            "pubs": None if self.pubs is None else sorted(self.pubs),
            "subs": None if self.subs is None else sorted(self.subs),
            "timestamp": self.timestamp,
        }
        payload = _canonical_json(data).encode("utf-8")
        return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()