"""Utility functions for turning solver output into rating store rows."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from app.core.comparison import Battle
from app.core.ranking import DEFAULT_RATING, DEFAULT_RD, RatingResult

ALGORITHM = "whr"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def count_battles(battles: Iterable[Battle]) -> Dict[str, int]:
    """
    Count battles per song. Each battle counts once for both sides.

    Args:
        battles: All battles of the collection

    Returns:
        Dict mapping song_id to number of battles it took part in
    """
    counts: Dict[str, int] = {}
    for battle in battles:
        counts[battle.song_a_id] = counts.get(battle.song_a_id, 0) + 1
        counts[battle.song_b_id] = counts.get(battle.song_b_id, 0) + 1
    return counts


def last_battle_times(battles: Iterable[Battle]) -> Dict[str, str]:
    """
    Latest created_at per song. Battles without a timestamp are skipped.

    Timestamps are compared as ISO strings, which orders correctly as long as
    the store returns them in one timezone format.
    """
    latest: Dict[str, str] = {}
    for battle in battles:
        if not battle.created_at:
            continue
        for sid in (battle.song_a_id, battle.song_b_id):
            existing = latest.get(sid)
            if existing is None or battle.created_at > existing:
                latest[sid] = battle.created_at
    return latest


def default_rating_row(
    project_id: str,
    user_id: str,
    song_id: str,
    computed_at: str
) -> Dict[str, Any]:
    """Row for a song with no battles (also used when all battles are cleared)."""
    return {
        "project_id": project_id,
        "song_id": song_id,
        "user_id": user_id,
        "rating": DEFAULT_RATING,
        "rd": DEFAULT_RD,
        "battle_count": 0,
        "algorithm": ALGORITHM,
        "computed_at": computed_at,
        "last_battle_at": None,
    }


def build_rating_rows(
    project_id: str,
    user_id: str,
    song_ids: List[str],
    battles: List[Battle],
    results: Mapping[str, RatingResult],
    computed_at: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Build one rating row per song for the rating store.

    Songs absent from results (never battled) get the default rating and RD.

    Args:
        project_id: Project the ratings belong to
        user_id: Rater whose battles were solved
        song_ids: Every song of the project
        battles: The battles that were solved
        results: Output of RankingManager.solve
        computed_at: ISO timestamp shared by all rows (defaults to now)

    Returns:
        List of row dicts keyed by (project_id, song_id, user_id)
    """
    computed_at = computed_at or utc_now_iso()
    counts = count_battles(battles)
    last_at = last_battle_times(battles)

    rows = []
    for song_id in song_ids:
        row = default_rating_row(project_id, user_id, song_id, computed_at)
        result = results.get(song_id)
        if result is not None:
            row["rating"] = result.rating
            row["rd"] = result.rd
        row["battle_count"] = counts.get(song_id, 0)
        row["last_battle_at"] = last_at.get(song_id)
        rows.append(row)

    return rows
