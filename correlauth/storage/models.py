from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from enum import Enum


class CorrelationState(str, Enum):
    """Confirmation state of a correlation record.

    UNFAMILIAR records were just created and have not completed a confirmed
    round trip; no bearer token is issued for them. A record becomes
    ESTABLISHED through the store's confirmation policy or a secret update.
    """

    UNFAMILIAR = "unfamiliar"
    ESTABLISHED = "established"


@dataclass(frozen=True)
class CorrelationRecord:
    id: str
    secret: str = ""
    state: CorrelationState = CorrelationState.UNFAMILIAR

    @classmethod
    def new(cls) -> "CorrelationRecord":
        return cls(id=str(uuid.uuid4()))

    @property
    def is_unfamiliar(self) -> bool:
        return self.state is CorrelationState.UNFAMILIAR

    def rotated(self, secret: str) -> "CorrelationRecord":
        return replace(self, secret=secret, state=CorrelationState.ESTABLISHED)

    def as_claim(self) -> dict[str, str]:
        """Shape embedded in a token's ``correlation`` claim."""
        return {"id": self.id, "secret": self.secret}
