"""Battle records and the confidence -> target score mapping."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, model_validator

# winner_id value meaning the battle was a draw
DRAW = None


class Confidence(str, Enum):
    OBVIOUS = "obvious"
    CLEAR = "clear"
    SLIGHT = "slight"
    COIN_FLIP = "coin_flip"


# Target score for the declared winner. The loser gets 1 - score.
CONFIDENCE_SCORES: Dict[str, float] = {
    Confidence.OBVIOUS.value: 1.0,
    Confidence.CLEAR.value: 0.85,
    Confidence.SLIGHT.value: 0.7,
    Confidence.COIN_FLIP.value: 0.55,
}

DRAW_SCORE = 0.5


def confidence_score(confidence: Optional[str]) -> float:
    """
    Winner's target score for a confidence label.
    Missing or unrecognized labels score like 'obvious'.
    """
    if isinstance(confidence, Confidence):
        confidence = confidence.value
    return CONFIDENCE_SCORES.get(confidence or Confidence.OBVIOUS.value, 1.0)


class Battle(BaseModel):
    """
    One recorded comparison between two songs.

    Positional: song_a_id / song_b_id keep the order they were shown in,
    but the rating model treats both sides symmetrically.
    """
    model_config = ConfigDict(frozen=True)

    song_a_id: str
    song_b_id: str
    winner_id: Optional[str] = DRAW
    confidence: Optional[str] = Confidence.OBVIOUS.value
    created_at: Optional[str] = None

    @model_validator(mode="after")
    def _distinct_songs(self) -> "Battle":
        if self.song_a_id == self.song_b_id:
            raise ValueError(f"Battle needs two distinct songs, got {self.song_a_id} twice")
        return self

    @property
    def is_draw(self) -> bool:
        return self.winner_id is DRAW

    def opponent_of(self, song_id: str) -> str:
        return self.song_b_id if song_id == self.song_a_id else self.song_a_id

    def result_for(self, song_id: str) -> str:
        """'win', 'loss' or 'draw' from one side's point of view."""
        if self.is_draw:
            return "draw"
        return "win" if self.winner_id == song_id else "loss"

    def target_score(self, is_a: bool) -> float:
        """Actual score for side A (is_a=True) or side B."""
        if self.is_draw:
            return DRAW_SCORE
        own_id = self.song_a_id if is_a else self.song_b_id
        score = confidence_score(self.confidence)
        return score if self.winner_id == own_id else 1.0 - score

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Battle":
        """Build a Battle from a battles table row."""
        winner = row.get("winner_id")
        created_at = row.get("created_at")
        return cls(
            song_a_id=str(row["song_a_id"]),
            song_b_id=str(row["song_b_id"]),
            winner_id=str(winner) if winner else DRAW,
            confidence=row.get("confidence"),
            created_at=str(created_at) if created_at else None,
        )
