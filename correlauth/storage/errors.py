from __future__ import annotations

from typing import Any, Dict, Optional


class StaleSecret(Exception):
    """Raised when a compare-and-swap secret update loses to a concurrent writer.

    Also raised when the record to update no longer exists.
    """

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


__all__ = ["StaleSecret"]
