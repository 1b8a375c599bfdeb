from __future__ import annotations

import hashlib
import random
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from app.core.comparison import Battle
from app.core.ranking import DEFAULT_RATING, DEFAULT_RD

Song = Dict[str, Any]
RatingRow = Mapping[str, Any]


class BattleScope(BaseModel):
    """Which songs the next battle is drawn from."""
    type: Literal["all", "album", "cross_album"] = "all"
    album: Optional[str] = None
    album_a: Optional[str] = None
    album_b: Optional[str] = None
    top_n: Optional[int] = Field(default=None, ge=1)


class PoolStats(BaseModel):
    pool_size: int = 0
    total_pairs: int = 0
    completed_pairs: int = 0


def _stable_seed_int(seed: str) -> int:
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=False)


def make_rng(seed: Optional[str] = None) -> random.Random:
    """Deterministic generator for a seed string, fresh entropy otherwise."""
    return random.Random(_stable_seed_int(seed)) if seed else random.Random()


def _pair_key(a: str, b: str) -> Tuple[str, str]:
    return (a, b) if a <= b else (b, a)


def _rd_of(song: Song, ratings: Optional[Mapping[str, RatingRow]]) -> float:
    row = ratings.get(str(song["id"])) if ratings else None
    return float(row["rd"]) if row else float(DEFAULT_RD)


def _rating_of(song: Song, ratings: Optional[Mapping[str, RatingRow]]) -> float:
    row = ratings.get(str(song["id"])) if ratings else None
    return float(row["rating"]) if row else float(DEFAULT_RATING)


def weighted_pick(items: Sequence[Any], weights: Sequence[float], rng: random.Random) -> Any:
    """Pick one item with probability proportional to its weight."""
    total = sum(weights)
    r = rng.random() * total
    for item, weight in zip(items, weights):
        r -= weight
        if r <= 0:
            return item
    return items[-1]


def select_random_pair(
    songs: Sequence[Song],
    ratings: Optional[Mapping[str, RatingRow]] = None,
    rng: Optional[random.Random] = None,
) -> Optional[Tuple[Song, Song]]:
    """Pick two distinct songs.

    Without ratings the pair is uniform. With ratings both picks are weighted
    by RD, so less certain songs battle more often (unrated songs count as
    DEFAULT_RD).
    """
    if len(songs) < 2:
        return None
    rng = rng or make_rng()

    if ratings is None:
        song_a, song_b = rng.sample(list(songs), 2)
        return song_a, song_b

    song_a = weighted_pick(songs, [_rd_of(s, ratings) for s in songs], rng)
    remaining = [s for s in songs if s["id"] != song_a["id"]]
    song_b = weighted_pick(remaining, [_rd_of(s, ratings) for s in remaining], rng)
    return song_a, song_b


def build_pools(
    songs: Sequence[Song],
    scope: BattleScope,
    ratings: Optional[Mapping[str, RatingRow]] = None,
) -> Tuple[List[Song], List[Song], List[Song]]:
    """Resolve a scope to (pool, pool_a, pool_b).

    pool_a / pool_b are only filled for cross-album scopes; pool is then their
    concatenation. top_n keeps the best-rated songs of each album.
    """
    if scope.type == "album" and scope.album:
        return [s for s in songs if s.get("album") == scope.album], [], []

    if scope.type == "cross_album" and scope.album_a and scope.album_b:
        pool_a = [s for s in songs if s.get("album") == scope.album_a]
        pool_b = [s for s in songs if s.get("album") == scope.album_b]

        if scope.top_n:
            def top(pool: List[Song]) -> List[Song]:
                ranked = sorted(pool, key=lambda s: _rating_of(s, ratings), reverse=True)
                return ranked[:scope.top_n]
            pool_a, pool_b = top(pool_a), top(pool_b)

        return pool_a + pool_b, pool_a, pool_b

    return list(songs), [], []


def completed_pairs(
    battles: Sequence[Battle],
    pool: Sequence[Song],
    pool_a: Sequence[Song] = (),
    pool_b: Sequence[Song] = (),
) -> Set[Tuple[str, str]]:
    """Distinct unordered pairs already battled inside the scope."""
    pairs: Set[Tuple[str, str]] = set()

    if pool_a or pool_b:
        ids_a = {str(s["id"]) for s in pool_a}
        ids_b = {str(s["id"]) for s in pool_b}
        for b in battles:
            crosses = (b.song_a_id in ids_a and b.song_b_id in ids_b) or \
                      (b.song_a_id in ids_b and b.song_b_id in ids_a)
            if crosses:
                pairs.add(_pair_key(b.song_a_id, b.song_b_id))
        return pairs

    pool_ids = {str(s["id"]) for s in pool}
    for b in battles:
        if b.song_a_id in pool_ids and b.song_b_id in pool_ids:
            pairs.add(_pair_key(b.song_a_id, b.song_b_id))
    return pairs


def select_next_pair(
    songs: Sequence[Song],
    battles: Sequence[Battle],
    scope: Optional[BattleScope] = None,
    ratings: Optional[Mapping[str, RatingRow]] = None,
    rng: Optional[random.Random] = None,
) -> Tuple[Optional[Tuple[Song, Song]], PoolStats]:
    """Choose the next battle for a scope and report scope progress.

    - cross_album: round-robin, a random A x B pair that has not been played;
      None once every pair is done
    - otherwise: RD-weighted random pair

    Returns (pair or None, PoolStats).
    """
    scope = scope or BattleScope()
    rng = rng or make_rng()
    pool, pool_a, pool_b = build_pools(songs, scope, ratings)
    cross_album = scope.type == "cross_album" and bool(scope.album_a and scope.album_b)

    if len(pool) < 2:
        return None, PoolStats(pool_size=len(pool))

    if cross_album and (not pool_a or not pool_b):
        return None, PoolStats()

    pool_size = len(pool)
    total = len(pool_a) * len(pool_b) if cross_album else pool_size * (pool_size - 1) // 2
    done = completed_pairs(battles, pool, pool_a, pool_b)
    stats = PoolStats(pool_size=pool_size, total_pairs=total, completed_pairs=len(done))

    if cross_album:
        unplayed = [
            (a, b) for a in pool_a for b in pool_b
            if a["id"] != b["id"] and _pair_key(str(a["id"]), str(b["id"])) not in done
        ]
        if not unplayed:
            return None, stats
        return rng.choice(unplayed), stats

    return select_random_pair(pool, ratings if ratings is not None else {}, rng), stats
