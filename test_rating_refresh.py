import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch
from redis.exceptions import LockNotOwnedError

from app.tasks import (
    collection_lock,
    process_rating_refresh,
    reset_collection_ratings,
    run_rating_refresh,
    run_rating_reset,
)


def _mock_store(mock_supabase, battles, song_ids):
    mock_supabase.get_battles = AsyncMock(return_value=battles)
    mock_supabase.get_project_song_ids = AsyncMock(return_value=song_ids)
    mock_supabase.upsert_ratings = AsyncMock(return_value=None)
    mock_supabase.record_whr_calculation = AsyncMock(return_value=None)


class TestRatingRefresh(unittest.TestCase):
    def setUp(self):
        self.battles = [
            {"song_a_id": "X", "song_b_id": "Y", "winner_id": "X", "confidence": "obvious",
             "created_at": "2026-05-01T12:00:00+00:00"},
            {"song_a_id": "Y", "song_b_id": "Z", "winner_id": "Z", "confidence": "slight",
             "created_at": "2026-05-02T12:00:00+00:00"},
        ]
        self.song_ids = ["X", "Y", "Z", "W"]

    @patch("app.tasks.supabase_client")
    def test_refresh_persists_every_song(self, mock_supabase):
        _mock_store(mock_supabase, self.battles, self.song_ids)

        results = asyncio.run(process_rating_refresh("p1", "u1"))

        self.assertEqual(set(results), {"X", "Y", "Z"})
        mock_supabase.upsert_ratings.assert_called_once()
        rows = mock_supabase.upsert_ratings.call_args[0][0]
        by_id = {r["song_id"]: r for r in rows}

        self.assertEqual(len(rows), 4)
        self.assertLess(by_id["Y"]["rating"], 1500)
        self.assertLess(1500, by_id["Z"]["rating"])
        self.assertLess(by_id["Z"]["rating"], by_id["X"]["rating"])
        self.assertEqual(by_id["Y"]["battle_count"], 2)
        self.assertEqual(by_id["Y"]["last_battle_at"], "2026-05-02T12:00:00+00:00")
        self.assertEqual((by_id["W"]["rating"], by_id["W"]["rd"]), (1500, 350))

        _, kwargs = mock_supabase.record_whr_calculation.call_args
        self.assertEqual(kwargs["battles_processed"], 2)
        self.assertEqual(kwargs["songs_updated"], 4)
        self.assertEqual(kwargs["triggered_by"], "auto")

    @patch("app.tasks.supabase_client")
    def test_refresh_without_songs_is_a_no_op(self, mock_supabase):
        _mock_store(mock_supabase, [], [])

        results = asyncio.run(process_rating_refresh("p1", "u1"))

        self.assertEqual(results, {})
        mock_supabase.upsert_ratings.assert_not_called()

    @patch("app.tasks.supabase_client")
    def test_refresh_with_no_battles_writes_defaults(self, mock_supabase):
        _mock_store(mock_supabase, [], ["X", "Y"])

        asyncio.run(process_rating_refresh("p1", "u1", "manual"))

        rows = mock_supabase.upsert_ratings.call_args[0][0]
        self.assertTrue(all(r["rating"] == 1500 and r["rd"] == 350 for r in rows))

    @patch("app.tasks.supabase_client")
    def test_reset_writes_defaults(self, mock_supabase):
        _mock_store(mock_supabase, [], ["X", "Y", "Z"])

        count = asyncio.run(reset_collection_ratings("p1", "u1"))

        self.assertEqual(count, 3)
        rows = mock_supabase.upsert_ratings.call_args[0][0]
        self.assertTrue(all(r["battle_count"] == 0 and r["last_battle_at"] is None for r in rows))
        mock_supabase.record_whr_calculation.assert_not_called()

    @patch("app.tasks.supabase_client")
    def test_reset_solves_when_battles_remain(self, mock_supabase):
        # e.g. the clear failed, or a battle was recorded right after it
        _mock_store(mock_supabase, self.battles, self.song_ids)

        count = asyncio.run(reset_collection_ratings("p1", "u1"))

        self.assertEqual(count, 4)
        rows = mock_supabase.upsert_ratings.call_args[0][0]
        by_id = {r["song_id"]: r for r in rows}
        self.assertEqual(by_id["Y"]["battle_count"], 2)
        self.assertLess(by_id["Y"]["rating"], 1500)
        mock_supabase.record_whr_calculation.assert_called_once()


class TestRatingWorker(unittest.TestCase):
    @patch("app.tasks.supabase_client")
    @patch("app.tasks.sync_redis_conn")
    def test_refresh_runs_under_collection_lock(self, mock_redis, mock_supabase):
        lock = MagicMock()
        lock.acquire.return_value = True
        mock_redis.lock.return_value = lock
        _mock_store(mock_supabase, [], ["X"])

        run_rating_refresh("P1", "U1")

        lock_key = mock_redis.lock.call_args[0][0]
        self.assertEqual(lock_key, "rating_refresh_lock:p1:u1")
        lock.release.assert_called_once()
        mock_supabase.upsert_ratings.assert_called_once()

    @patch("app.tasks.supabase_client")
    @patch("app.tasks.sync_redis_conn")
    def test_busy_collection_raises(self, mock_redis, mock_supabase):
        lock = MagicMock()
        lock.acquire.return_value = False
        mock_redis.lock.return_value = lock
        _mock_store(mock_supabase, [], ["X"])

        with self.assertRaises(TimeoutError):
            run_rating_refresh("p1", "u1")

        mock_supabase.get_battles.assert_not_called()
        lock.release.assert_not_called()

    @patch("app.tasks.supabase_client")
    @patch("app.tasks.sync_redis_conn")
    def test_lost_lock_is_not_fatal(self, mock_redis, mock_supabase):
        lock = MagicMock()
        lock.acquire.return_value = True
        lock.release.side_effect = LockNotOwnedError("expired")
        mock_redis.lock.return_value = lock
        _mock_store(mock_supabase, [], ["X"])

        run_rating_reset("p1", "u1")

        mock_supabase.upsert_ratings.assert_called_once()

    @patch("app.tasks.supabase_client")
    @patch("app.tasks.sync_redis_conn")
    def test_collection_lock_wraps_direct_refresh(self, mock_redis, mock_supabase):
        lock = MagicMock()
        lock.acquire.return_value = True
        mock_redis.lock.return_value = lock
        _mock_store(mock_supabase, [], ["X"])

        async def refresh_under_lock():
            with collection_lock("p1", "u1"):
                lock.release.assert_not_called()
                await process_rating_refresh("p1", "u1", "manual")

        asyncio.run(refresh_under_lock())

        self.assertEqual(mock_redis.lock.call_args[0][0], "rating_refresh_lock:p1:u1")
        lock.release.assert_called_once()
        _, kwargs = mock_supabase.record_whr_calculation.call_args
        self.assertEqual(kwargs["triggered_by"], "manual")

    @patch("app.tasks.supabase_client")
    @patch("app.tasks.sync_redis_conn")
    def test_store_failure_propagates_and_releases(self, mock_redis, mock_supabase):
        lock = MagicMock()
        lock.acquire.return_value = True
        mock_redis.lock.return_value = lock
        _mock_store(mock_supabase, [], ["X"])
        mock_supabase.upsert_ratings = AsyncMock(side_effect=RuntimeError("db down"))

        with self.assertRaises(RuntimeError):
            run_rating_refresh("p1", "u1")

        lock.release.assert_called_once()


if __name__ == "__main__":
    unittest.main()
