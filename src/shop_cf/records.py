"""Typed records passed between repositories and services."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Interaction:
    user_id: int
    item_id: int
    action_kind: str
    occurred_at: datetime


@dataclass(frozen=True)
class Neighbor:
    user_id: int
    similarity: float


@dataclass(frozen=True)
class ScoredItem:
    item_id: int
    score: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoredItem":
        return cls(item_id=int(data["item_id"]), score=float(data["score"]), reason=str(data["reason"]))


@dataclass(frozen=True)
class SimilarityRecord:
    """A canonical (id_a < id_b) pair with its score."""

    id_a: int
    id_b: int
    score: float
    computed_at: Optional[datetime] = None


@dataclass
class KindStats:
    shown: int = 0
    clicked: int = 0
    purchased: int = 0

    @property
    def click_rate(self) -> float:
        return self.clicked / self.shown * 100.0 if self.shown else 0.0

    @property
    def purchase_rate(self) -> float:
        return self.purchased / self.shown * 100.0 if self.shown else 0.0


@dataclass
class ImpressionStats:
    user_id: int
    total: int = 0
    overall: KindStats = field(default_factory=KindStats)
    by_kind: Dict[str, KindStats] = field(default_factory=dict)


@dataclass(frozen=True)
class RecommendationEvaluation:
    """Quality of what was shown to one user, all values in percent of shown impressions."""

    user_id: int
    shown: int
    accuracy: float
    click_rate: float
    purchase_rate: float
    novelty: float
    serendipity: float
