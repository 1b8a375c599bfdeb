import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator
from redis.exceptions import LockError
from app.core.comparison import Battle
from app.core.ranking import RankingManager, RatingResult
from app.core.rating_utils import build_rating_rows, default_rating_row, utc_now_iso
from app.core.rating_config import TRIGGER_AUTO, get_rating_lock_key
from app.core.config import settings
from app.core.queue import sync_redis_conn
from app.clients.supabase_db import supabase_client

logger = logging.getLogger(__name__)

def _run_async_task(coro) -> Any:
    """
    Helper to run async tasks in a synchronous worker environment.

    Args:
        coro: The coroutine to run

    Returns:
        The result of the coroutine
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()

async def process_rating_refresh(
    project_id: str,
    user_id: str,
    triggered_by: str = TRIGGER_AUTO
) -> Dict[str, RatingResult]:
    """Re-solve one rating collection from its full battle history and persist it."""
    start_time = time.time()
    logger.info(f"[TIMING] Starting rating refresh for project_id={project_id} user_id={user_id}")

    # 1. Fetch battles and the song universe in parallel
    fetch_start = time.time()
    battle_rows, song_ids = await asyncio.gather(
        supabase_client.get_battles(project_id, user_id),
        supabase_client.get_project_song_ids(project_id)
    )
    fetch_time = (time.time() - fetch_start) * 1000
    logger.info(f"[TIMING] Data fetch took {fetch_time:.2f}ms ({len(battle_rows)} battles, {len(song_ids)} songs)")

    if not song_ids:
        logger.warning(f"[RANKING] No songs found for project_id={project_id}")
        return {}

    # 2. Solve from scratch
    solve_start = time.time()
    battles = [Battle.from_row(row) for row in battle_rows]
    results = RankingManager.solve(battles, song_ids)
    solve_time = (time.time() - solve_start) * 1000
    logger.info(f"[TIMING] WHR solve took {solve_time:.2f}ms")

    # 3. Persist one row per song, defaults for songs without battles
    persist_start = time.time()
    rows = build_rating_rows(project_id, user_id, song_ids, battles, results)
    await supabase_client.upsert_ratings(rows)
    persist_time = (time.time() - persist_start) * 1000
    logger.info(f"[TIMING] Database persist took {persist_time:.2f}ms")

    total_time = (time.time() - start_time) * 1000
    await supabase_client.record_whr_calculation(
        project_id,
        user_id,
        battles_processed=len(battles),
        songs_updated=len(rows),
        calculation_time_ms=int(total_time),
        triggered_by=triggered_by
    )

    logger.info(f"[TIMING] Completed rating refresh for project_id={project_id} user_id={user_id} in {total_time:.2f}ms")
    return results

async def reset_collection_ratings(project_id: str, user_id: str) -> int:
    """
    Write default rows for every song of the project.
    Used after all battles are cleared; the solver is not involved unless
    battles exist again by the time the job runs (a failed clear, or a battle
    recorded right after it), in which case the collection is re-solved.
    """
    battle_rows, song_ids = await asyncio.gather(
        supabase_client.get_battles(project_id, user_id),
        supabase_client.get_project_song_ids(project_id)
    )
    if battle_rows:
        logger.info(f"[RANKING] {len(battle_rows)} battles present at reset for project_id={project_id}, solving instead")
        await process_rating_refresh(project_id, user_id)
        return len(song_ids)

    if not song_ids:
        return 0

    computed_at = utc_now_iso()
    rows = [default_rating_row(project_id, user_id, sid, computed_at) for sid in song_ids]
    await supabase_client.upsert_ratings(rows)
    logger.info(f"[RANKING] Reset {len(rows)} ratings for project_id={project_id} user_id={user_id}")
    return len(rows)

@contextmanager
def collection_lock(project_id: str, user_id: str) -> Iterator[None]:
    """
    Hold the collection's Redis lock, waiting up to RATING_LOCK_WAIT_SECONDS.

    The lock spans read-solve-write, so refreshes of one collection persist
    in the order they read the battle set.
    """
    lock_key = get_rating_lock_key(project_id, user_id)
    lock = sync_redis_conn.lock(
        lock_key,
        timeout=settings.RATING_LOCK_TIMEOUT_SECONDS,
        blocking_timeout=settings.RATING_LOCK_WAIT_SECONDS
    )

    if not lock.acquire():
        raise TimeoutError(f"Could not acquire rating lock '{lock_key}'")

    try:
        yield
    finally:
        try:
            lock.release()
        except LockError as e:
            # Lock expired while we were still working
            logger.warning(f"[WORKER] Rating lock '{lock_key}' was lost before release: {e}")

def _run_locked(project_id: str, user_id: str, coro) -> Any:
    """Run a coroutine to completion while holding the collection's lock."""
    try:
        with collection_lock(project_id, user_id):
            return _run_async_task(coro)
    finally:
        # No-op once awaited; avoids a never-awaited warning when the lock times out
        coro.close()

def run_rating_refresh(project_id: str, user_id: str, triggered_by: str = TRIGGER_AUTO) -> None:
    """Synchronous wrapper for the rating refresh task."""
    logger.info(f"[WORKER] Processing rating refresh for project_id={project_id} user_id={user_id} ({triggered_by})")
    try:
        _run_locked(project_id, user_id, process_rating_refresh(project_id, user_id, triggered_by))
    except Exception as e:
        logger.error(f"[WORKER] Failed rating refresh for project_id={project_id} user_id={user_id}: {e}")
        raise

def run_rating_reset(project_id: str, user_id: str) -> None:
    """Synchronous wrapper for resetting a cleared collection."""
    logger.info(f"[WORKER] Processing rating reset for project_id={project_id} user_id={user_id}")
    try:
        _run_locked(project_id, user_id, reset_collection_ratings(project_id, user_id))
    except Exception as e:
        logger.error(f"[WORKER] Failed rating reset for project_id={project_id} user_id={user_id}: {e}")
        raise
