import logging
import asyncio
from typing import Optional, Literal
from fastapi import APIRouter, HTTPException, Query, Request
from app.schemas.battle import (
    BattleCreate, BattleUpdate, BattleResponse, ClearBattlesResponse,
    RefreshResponse, NextPairResponse, SongWithRating, SongSummary,
    BattleHistoryEntry, BattleHistoryResponse, SongBattleEntry, SongBattlesResponse
)
from app.clients.supabase_db import supabase_client
from app.core.battle_pairs import BattleScope, make_rng, select_next_pair
from app.core.comparison import Battle
from app.core.config import settings
from app.core.queue import rating_queue
from app.core.rating_config import TRIGGER_AUTO, TRIGGER_MANUAL
from app.tasks import run_rating_refresh, run_rating_reset
from app.core.limiter import limiter
from uuid import UUID

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects/{project_id}/users/{user_id}")

def _queue_refresh(project_id: str, user_id: str, triggered_by: str = TRIGGER_AUTO) -> bool:
    """Every change to the battle set is followed by a full re-solve."""
    rating_queue.enqueue(run_rating_refresh, project_id, user_id, triggered_by)
    return True

@router.post("/battles", response_model=BattleResponse)
@limiter.limit(settings.BATTLE_RATE_LIMIT)
async def create_battle(request: Request, project_id: UUID, user_id: UUID, battle: BattleCreate):
    """
    Record a battle and queue a re-solve of the user's ratings.
    winner_id = null records a draw.
    """
    try:
        pid, uid = str(project_id), str(user_id)
        id_a, id_b = str(battle.song_a_id), str(battle.song_b_id)

        song_ids = set(await supabase_client.get_project_song_ids(pid))
        if id_a not in song_ids or id_b not in song_ids:
            raise HTTPException(status_code=404, detail="One or both songs not found in project")

        row = await supabase_client.insert_battle(
            pid, uid, id_a, id_b,
            str(battle.winner_id) if battle.winner_id else None,
            battle.confidence.value
        )

        return BattleResponse(
            success=True,
            battle_id=str(row.get("id")),
            refresh_queued=_queue_refresh(pid, uid)
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to record battle: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.patch("/battles/{battle_id}", response_model=BattleResponse)
async def update_battle(project_id: UUID, user_id: UUID, battle_id: UUID, update: BattleUpdate):
    """
    Change the declared winner / confidence of a battle.
    Battles are immutable: a replacement with the same created_at is
    inserted, then the old one is deleted.
    """
    try:
        pid, uid, bid = str(project_id), str(user_id), str(battle_id)
        existing = await supabase_client.get_battle(pid, uid, bid)
        if not existing:
            raise HTTPException(status_code=404, detail="Battle not found")

        id_a, id_b = str(existing["song_a_id"]), str(existing["song_b_id"])
        winner = str(update.winner_id) if update.winner_id else None
        if winner is not None and winner not in (id_a, id_b):
            raise HTTPException(status_code=422, detail="winner_id must be one of the two songs, or null for a draw")

        row = await supabase_client.insert_battle(
            pid, uid, id_a, id_b, winner, update.confidence.value,
            created_at=existing.get("created_at")
        )
        try:
            await supabase_client.delete_battle(pid, uid, bid)
        finally:
            # The replacement is stored, so the battle set changed even if the delete failed
            queued = _queue_refresh(pid, uid)

        return BattleResponse(success=True, battle_id=str(row.get("id")), refresh_queued=queued)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to update battle {battle_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.delete("/battles/{battle_id}", response_model=BattleResponse)
async def delete_battle(project_id: UUID, user_id: UUID, battle_id: UUID):
    """Undo a battle and queue a re-solve."""
    try:
        pid, uid = str(project_id), str(user_id)
        deleted = await supabase_client.delete_battle(pid, uid, str(battle_id))
        if not deleted:
            raise HTTPException(status_code=404, detail="Battle not found")

        return BattleResponse(success=True, battle_id=str(battle_id), refresh_queued=_queue_refresh(pid, uid))

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to delete battle {battle_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.delete("/battles", response_model=ClearBattlesResponse)
async def clear_battles(project_id: UUID, user_id: UUID):
    """
    Remove all of the user's battles in the project.
    Ratings go back to the defaults; there is nothing to solve.
    """
    try:
        pid, uid = str(project_id), str(user_id)
        try:
            removed = await supabase_client.clear_battles(pid, uid)
        finally:
            # Queued even when the clear fails; the reset job re-solves
            # instead if any battles are left
            rating_queue.enqueue(run_rating_reset, pid, uid)
        logger.info(f"Cleared {removed} battles for project {pid} user {uid}")
        return ClearBattlesResponse(success=True, battles_removed=removed, reset_queued=True)
    except Exception as e:
        logger.error(f"Failed to clear battles for project {project_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/ratings/refresh", response_model=RefreshResponse)
async def refresh_ratings(project_id: UUID, user_id: UUID):
    """Queue a manual re-solve of the user's ratings."""
    try:
        queued = _queue_refresh(str(project_id), str(user_id), TRIGGER_MANUAL)
        return RefreshResponse(success=True, refresh_queued=queued)
    except Exception as e:
        logger.error(f"Failed to queue rating refresh for project {project_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/battles", response_model=BattleHistoryResponse)
async def get_battle_history(project_id: UUID, user_id: UUID, limit: int = Query(50, ge=1, le=500)):
    """Recent battles, newest first, with both songs attached (for undo/edit)."""
    try:
        rows = await supabase_client.get_battle_history(str(project_id), str(user_id), limit)
        return BattleHistoryResponse(battles=[BattleHistoryEntry.model_validate(r) for r in rows])
    except Exception as e:
        logger.error(f"Failed to get battle history for project {project_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/songs/{song_id}/battles", response_model=SongBattlesResponse)
async def get_song_battles(project_id: UUID, user_id: UUID, song_id: UUID):
    """One song's battles, newest first, each with the opponent and the song's result."""
    try:
        pid, uid, sid = str(project_id), str(user_id), str(song_id)
        rows, songs = await asyncio.gather(
            supabase_client.get_song_battles(pid, uid, sid),
            supabase_client.get_project_songs(pid)
        )
        songs_by_id = {str(s["id"]): s for s in songs}

        entries = []
        for row in rows:
            battle = Battle.from_row(row)
            opponent = songs_by_id.get(battle.opponent_of(sid))
            entries.append(SongBattleEntry(
                **battle.model_dump(),
                id=str(row["id"]),
                opponent=SongSummary.model_validate(opponent) if opponent else None,
                result=battle.result_for(sid)
            ))

        return SongBattlesResponse(song_id=sid, battles=entries)

    except Exception as e:
        logger.error(f"Failed to get battles of song {song_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/battles/next", response_model=NextPairResponse)
async def get_next_pair(
    project_id: UUID,
    user_id: UUID,
    scope: Literal["all", "album", "cross_album"] = Query("all"),
    album: Optional[str] = None,
    album_a: Optional[str] = None,
    album_b: Optional[str] = None,
    top_n: Optional[int] = Query(None, ge=1),
    seed: Optional[str] = Query(None, description="Makes the pick deterministic")
):
    """
    Propose the next battle within a scope, plus how much of the scope is done.
    Returns null songs when the scope has fewer than two songs or every
    cross-album pair has been played.
    """
    try:
        pid, uid = str(project_id), str(user_id)
        songs, battle_rows, rating_rows = await asyncio.gather(
            supabase_client.get_project_songs(pid),
            supabase_client.get_battles(pid, uid),
            supabase_client.get_ratings(pid, uid)
        )

        ratings = {str(r["song_id"]): r for r in rating_rows}
        battles = [Battle.from_row(r) for r in battle_rows]
        battle_scope = BattleScope(type=scope, album=album, album_a=album_a, album_b=album_b, top_n=top_n)

        pair, stats = select_next_pair(songs, battles, battle_scope, ratings, make_rng(seed))
        if pair is None:
            return NextPairResponse(stats=stats)

        song_a, song_b = pair
        return NextPairResponse(
            song_a=SongWithRating.from_rows(song_a, ratings.get(str(song_a["id"]))),
            song_b=SongWithRating.from_rows(song_b, ratings.get(str(song_b["id"]))),
            stats=stats
        )

    except Exception as e:
        logger.error(f"Failed to select next pair for project {project_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
