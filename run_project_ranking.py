#!/usr/bin/env python
"""
Debug script to re-run the WHR solve for one user's battles in a project.
Usage: python run_project_ranking.py <project_id> <user_id>
"""
import asyncio
import sys
import logging
from app.tasks import collection_lock, process_rating_refresh
from app.clients.supabase_db import supabase_client
from app.core.comparison import Battle
from app.core.rating_config import TRIGGER_MANUAL
from app.core.ranking import RankingManager, DEFAULT_RATING, DEFAULT_RD

logging.basicConfig(level=logging.INFO, format='%(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


async def debug_project_ranking(project_id: str, user_id: str):
    """
    Solve the collection and print current vs. recomputed ratings.
    """
    print(f"\n{'='*60}")
    print(f"Re-running WHR for project {project_id}, user {user_id}")
    print(f"{'='*60}\n")

    # 1. Fetch collection data
    songs, battle_rows, rating_rows = await asyncio.gather(
        supabase_client.get_project_songs(project_id),
        supabase_client.get_battles(project_id, user_id),
        supabase_client.get_ratings(project_id, user_id)
    )

    print(f"Found {len(songs)} songs and {len(battle_rows)} battles\n")

    if not songs:
        print("ERROR: No songs found for this project!")
        return

    current = {str(r["song_id"]): r for r in rating_rows}
    id_to_title = {str(s["id"]): s.get("title") or "?" for s in songs}

    # 2. Solve
    song_ids = await supabase_client.get_project_song_ids(project_id)
    battles = [Battle.from_row(r) for r in battle_rows]
    results = RankingManager.solve(battles, song_ids)

    ranked = sorted(
        song_ids,
        key=lambda sid: results[sid].rating if sid in results else DEFAULT_RATING,
        reverse=True
    )

    print("NEW RANKING (WHR):")
    print("-" * 60)
    for i, sid in enumerate(ranked[:25], 1):
        title = id_to_title.get(sid, "?")[:32]
        result = results.get(sid)
        rating, rd = (result.rating, result.rd) if result else (DEFAULT_RATING, DEFAULT_RD)
        old = current.get(sid, {}).get("rating", DEFAULT_RATING)
        print(f"{i:2}. {title:32} {rating:5d} ±{rd:<4d} (was {old})")

    if len(ranked) > 25:
        print(f"    ... ({len(ranked) - 25} more songs)")

    unbattled = len(song_ids) - len(results)
    print(f"\n{len(results)} songs rated, {unbattled} without battles")

    # 3. Ask if user wants to persist
    print(f"\n{'='*60}")
    response = input("Persist these ratings to the database? [y/N]: ").strip().lower()

    if response == 'y':
        print("\nPersisting changes...")
        # Waits for any queued refresh of this collection that is already running
        with collection_lock(project_id, user_id):
            await process_rating_refresh(project_id, user_id, TRIGGER_MANUAL)
        print("Done! Ratings have been recomputed.")
    else:
        print("\nNo changes made.")


async def main():
    if len(sys.argv) < 3:
        print("Usage: python run_project_ranking.py <project_id> <user_id>")
        sys.exit(1)

    await debug_project_ranking(sys.argv[1], sys.argv[2])


if __name__ == "__main__":
    asyncio.run(main())
