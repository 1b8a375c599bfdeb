from typing import Dict, Any, Optional, cast, List
import logging
from supabase import create_async_client, AsyncClient
from app.core.config import settings

logger = logging.getLogger(__name__)

BATTLE_COLUMNS = "id, song_a_id, song_b_id, winner_id, confidence, created_at"
SONG_COLUMNS = "id, title, artist, album, year"
HISTORY_SONG_JOINS = (
    f"song_a:songs!battles_song_a_id_fkey({SONG_COLUMNS}), "
    f"song_b:songs!battles_song_b_id_fkey({SONG_COLUMNS})"
)

class SupabaseDB:
    def __init__(self):
        self.url = settings.effective_supabase_url
        self.key = settings.effective_supabase_key
        self._client: Optional[AsyncClient] = None

    async def get_client(self) -> AsyncClient:
        if self._client is None:
            if not self.url or not self.key:
                raise ValueError("Supabase URL and Key must be set in environment")
            self._client = await create_async_client(self.url, self.key)
        return self._client

    # ==================== Songs ====================

    async def get_project_songs(self, project_id: str) -> List[Dict[str, Any]]:
        """Get all songs of a project (the item universe for a solve)."""
        client = await self.get_client()
        try:
            response = await client.table("songs") \
                .select(SONG_COLUMNS) \
                .eq("project_id", project_id) \
                .execute()
            return cast(List[Dict[str, Any]], response.data or [])
        except Exception as e:
            logger.error(f"Database error in get_project_songs: {e}")
            return []

    async def get_project_song_ids(self, project_id: str) -> List[str]:
        """Get the ids of all songs in a project, in a stable order."""
        client = await self.get_client()
        response = await client.table("songs") \
            .select("id") \
            .eq("project_id", project_id) \
            .order("created_at") \
            .order("id") \
            .execute()
        return [str(row["id"]) for row in cast(List[Dict[str, Any]], response.data or [])]

    # ==================== Battles (outcome store) ====================

    async def get_battles(self, project_id: str, user_id: str) -> List[Dict[str, Any]]:
        """Get every battle one user recorded in a project."""
        client = await self.get_client()
        response = await client.table("battles") \
            .select(BATTLE_COLUMNS) \
            .eq("project_id", project_id) \
            .eq("user_id", user_id) \
            .execute()
        return cast(List[Dict[str, Any]], response.data or [])

    async def get_battle_history(self, project_id: str, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent battles first, with both songs joined in."""
        client = await self.get_client()
        response = await client.table("battles") \
            .select(f"{BATTLE_COLUMNS}, {HISTORY_SONG_JOINS}") \
            .eq("project_id", project_id) \
            .eq("user_id", user_id) \
            .order("created_at", desc=True) \
            .limit(limit) \
            .execute()
        return cast(List[Dict[str, Any]], response.data or [])

    async def get_song_battles(self, project_id: str, user_id: str, song_id: str) -> List[Dict[str, Any]]:
        """Every battle one song took part in, most recent first."""
        client = await self.get_client()
        response = await client.table("battles") \
            .select(BATTLE_COLUMNS) \
            .eq("project_id", project_id) \
            .eq("user_id", user_id) \
            .or_(f"song_a_id.eq.{song_id},song_b_id.eq.{song_id}") \
            .order("created_at", desc=True) \
            .execute()
        return cast(List[Dict[str, Any]], response.data or [])

    async def get_battle(self, project_id: str, user_id: str, battle_id: str) -> Optional[Dict[str, Any]]:
        client = await self.get_client()
        try:
            response = await client.table("battles") \
                .select(BATTLE_COLUMNS) \
                .eq("id", battle_id) \
                .eq("project_id", project_id) \
                .eq("user_id", user_id) \
                .execute()
            return cast(Dict[str, Any], response.data[0]) if response.data else None
        except Exception as e:
            logger.warning(f"Failed to get battle {battle_id}: {e}")
            return None

    async def insert_battle(
        self,
        project_id: str,
        user_id: str,
        song_a_id: str,
        song_b_id: str,
        winner_id: Optional[str],
        confidence: Optional[str],
        created_at: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Record a battle and return the stored row.
        created_at is only sent when replacing an edited battle; new battles
        take the database default.
        """
        client = await self.get_client()
        payload = {
            "project_id": project_id,
            "user_id": user_id,
            "song_a_id": song_a_id,
            "song_b_id": song_b_id,
            "winner_id": winner_id,
            "confidence": confidence,
        }
        if created_at:
            payload["created_at"] = created_at
        try:
            response = await client.table("battles").insert(payload).execute()
        except Exception as e:
            logger.error(f"Failed to insert battle for project {project_id}: {e}")
            raise

        if not response.data or not isinstance(response.data, list):
            raise ValueError("Failed to record battle: No data returned")
        return cast(Dict[str, Any], response.data[0])

    async def delete_battle(self, project_id: str, user_id: str, battle_id: str) -> bool:
        """Delete one battle. Returns False if nothing matched."""
        client = await self.get_client()
        # user_id filter: a user can only delete their own battles
        response = await client.table("battles") \
            .delete() \
            .eq("id", battle_id) \
            .eq("project_id", project_id) \
            .eq("user_id", user_id) \
            .execute()
        return bool(response.data)

    async def clear_battles(self, project_id: str, user_id: str) -> int:
        """Delete all of a user's battles in a project. Returns the number removed."""
        client = await self.get_client()
        response = await client.table("battles") \
            .delete() \
            .eq("project_id", project_id) \
            .eq("user_id", user_id) \
            .execute()
        return len(response.data or [])

    # ==================== Ratings (rating store) ====================

    async def get_ratings(self, project_id: str, user_id: str) -> List[Dict[str, Any]]:
        client = await self.get_client()
        try:
            response = await client.table("ratings") \
                .select("*") \
                .eq("project_id", project_id) \
                .eq("user_id", user_id) \
                .execute()
            return cast(List[Dict[str, Any]], response.data or [])
        except Exception as e:
            logger.error(f"Database error in get_ratings: {e}")
            return []

    async def upsert_ratings(self, rows: List[Dict[str, Any]]):
        """Bulk upsert rating rows keyed by (project_id, song_id, user_id)."""
        if not rows:
            return
        client = await self.get_client()
        try:
            await client.table("ratings").upsert(
                rows,
                on_conflict="project_id,song_id,user_id"
            ).execute()
        except Exception as e:
            logger.error(f"Failed bulk upsert of {len(rows)} ratings: {e}")
            raise

    async def record_whr_calculation(
        self,
        project_id: str,
        user_id: str,
        battles_processed: int,
        songs_updated: int,
        calculation_time_ms: Optional[int],
        triggered_by: str
    ):
        """Append a row to the whr_calculations audit log."""
        client = await self.get_client()
        try:
            await client.table("whr_calculations").insert({
                "project_id": project_id,
                "user_id": user_id,
                "battles_processed": battles_processed,
                "songs_updated": songs_updated,
                "calculation_time_ms": calculation_time_ms,
                "triggered_by": triggered_by,
            }).execute()
        except Exception as e:
            # The ratings are already persisted; a missing log row is not fatal
            logger.warning(f"Failed to record WHR calculation for project {project_id}: {e}")

supabase_client = SupabaseDB()
