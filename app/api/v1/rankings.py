import asyncio
import logging
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, HTTPException, Query
from app.schemas.battle import RankingsResponse, SongWithRating
from app.clients.supabase_db import supabase_client
from uuid import UUID

logger = logging.getLogger(__name__)

router = APIRouter()


def rank_songs(
    songs: List[Dict[str, Any]],
    rating_rows: List[Dict[str, Any]],
    album: Optional[str] = None,
    min_battles: int = 0,
    search: Optional[str] = None
) -> List[SongWithRating]:
    """
    Join songs with rating rows, apply the filters and sort by rating (highest first).

    Args:
        songs: Rows of the songs table
        rating_rows: Rows of the ratings table for one user
        album: Keep only songs of this album
        min_battles: Keep only songs with at least this many battles
        search: Case-insensitive match on title, artist or album
    """
    ratings = {str(r["song_id"]): r for r in rating_rows}
    ranked = [SongWithRating.from_rows(s, ratings.get(str(s["id"]))) for s in songs]

    if album:
        ranked = [s for s in ranked if s.album == album]
    if min_battles > 0:
        ranked = [s for s in ranked if s.battle_count >= min_battles]
    if search:
        q = search.lower()
        ranked = [
            s for s in ranked
            if q in (s.title or "").lower()
            or q in (s.artist or "").lower()
            or q in (s.album or "").lower()
        ]

    ranked.sort(key=lambda s: s.rating, reverse=True)
    return ranked


@router.get("/projects/{project_id}/users/{user_id}/rankings", response_model=RankingsResponse)
async def get_rankings(
    project_id: UUID,
    user_id: UUID,
    album: Optional[str] = None,
    min_battles: int = Query(0, ge=0),
    search: Optional[str] = None
):
    """
    Get one user's ranking of a project's songs.
    Songs that have no rating row yet show up with the default rating and RD.
    """
    pid, uid = str(project_id), str(user_id)
    try:
        songs, rating_rows = await asyncio.gather(
            supabase_client.get_project_songs(pid),
            supabase_client.get_ratings(pid, uid)
        )
    except Exception as e:
        logger.error(f"Failed to fetch rankings for project {pid}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    ranked = rank_songs(songs, rating_rows, album=album, min_battles=min_battles, search=search)
    logger.info(f"[API] GET rankings project={pid} user={uid} -> {len(ranked)} songs")
    return RankingsResponse(project_id=pid, user_id=uid, songs=ranked)
