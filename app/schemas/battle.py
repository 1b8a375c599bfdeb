from pydantic import BaseModel, UUID4, model_validator
from typing import Any, Dict, List, Literal, Optional
from app.core.battle_pairs import PoolStats
from app.core.comparison import Confidence
from app.core.ranking import DEFAULT_RATING, DEFAULT_RD

class BattleCreate(BaseModel):
    song_a_id: UUID4
    song_b_id: UUID4
    winner_id: Optional[UUID4] = None  # None = draw
    confidence: Confidence = Confidence.OBVIOUS

    @model_validator(mode="after")
    def _check_participants(self) -> "BattleCreate":
        if self.song_a_id == self.song_b_id:
            raise ValueError("song_a_id and song_b_id must differ")
        if self.winner_id is not None and self.winner_id not in (self.song_a_id, self.song_b_id):
            raise ValueError("winner_id must be one of the two songs, or null for a draw")
        return self

class BattleUpdate(BaseModel):
    winner_id: Optional[UUID4] = None  # None = draw
    confidence: Confidence = Confidence.OBVIOUS

class BattleResponse(BaseModel):
    success: bool
    battle_id: Optional[str] = None
    refresh_queued: bool = False

class ClearBattlesResponse(BaseModel):
    success: bool
    battles_removed: int
    reset_queued: bool = False

class RefreshResponse(BaseModel):
    success: bool
    refresh_queued: bool

class SongWithRating(BaseModel):
    id: str
    title: Optional[str] = "Unknown Track"
    artist: Optional[str] = "Unknown Artist"
    album: Optional[str] = None
    year: Optional[int] = None
    rating: float = DEFAULT_RATING
    rd: float = DEFAULT_RD
    battle_count: int = 0
    algorithm: str = "whr"
    last_battle_at: Optional[str] = None

    @classmethod
    def from_rows(cls, song: Dict[str, Any], rating: Optional[Dict[str, Any]] = None) -> "SongWithRating":
        """Join a songs row with its ratings row; unrated songs get the defaults."""
        rating = rating or {}
        last_battle_at = rating.get("last_battle_at")
        return cls(
            id=str(song["id"]),
            title=song.get("title"),
            artist=song.get("artist"),
            album=song.get("album"),
            year=song.get("year"),
            rating=rating.get("rating", DEFAULT_RATING),
            rd=rating.get("rd", DEFAULT_RD),
            battle_count=rating.get("battle_count", 0),
            algorithm=rating.get("algorithm", "whr"),
            last_battle_at=str(last_battle_at) if last_battle_at else None,
        )

class SongSummary(BaseModel):
    id: str
    title: Optional[str] = "Unknown Track"
    artist: Optional[str] = "Unknown Artist"
    album: Optional[str] = None
    year: Optional[int] = None

class BattleRecord(BaseModel):
    id: str
    song_a_id: str
    song_b_id: str
    winner_id: Optional[str] = None
    confidence: Optional[str] = None
    created_at: Optional[str] = None

class BattleHistoryEntry(BattleRecord):
    song_a: Optional[SongSummary] = None
    song_b: Optional[SongSummary] = None

class SongBattleEntry(BattleRecord):
    opponent: Optional[SongSummary] = None
    result: Literal["win", "loss", "draw"]

class BattleHistoryResponse(BaseModel):
    battles: List[BattleHistoryEntry]

class SongBattlesResponse(BaseModel):
    song_id: str
    battles: List[SongBattleEntry]

class NextPairResponse(BaseModel):
    song_a: Optional[SongWithRating] = None
    song_b: Optional[SongWithRating] = None
    stats: PoolStats

class RankingsResponse(BaseModel):
    project_id: str
    user_id: str
    songs: List[SongWithRating]
