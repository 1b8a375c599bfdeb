import sys
import os
import argparse
import random

# Add the project root to the python path so we can import the ranking manager
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import numpy as np  # noqa: E402

from app.core.comparison import Battle, Confidence  # noqa: E402
from app.core.ranking import RankingManager, ELO_SCALE  # noqa: E402


def confidence_for(p_win: float) -> Confidence:
    """How sure a listener would be, given the true win probability."""
    if p_win > 0.9:
        return Confidence.OBVIOUS
    if p_win > 0.75:
        return Confidence.CLEAR
    if p_win > 0.6:
        return Confidence.SLIGHT
    return Confidence.COIN_FLIP


def simulate(n_songs: int, n_battles: int, seed: int):
    rng = random.Random(seed)
    np_rng = np.random.default_rng(seed)

    # 1. Ground truth on the Elo scale
    true_elo = np_rng.normal(1500, 200, size=n_songs)
    song_ids = [f"song_{i}" for i in range(n_songs)]

    # 2. Simulate battles from the Bradley-Terry model
    battles = []
    for _ in range(n_battles):
        a, b = rng.sample(range(n_songs), 2)
        p_a = 1.0 / (1.0 + np.exp(-(true_elo[a] - true_elo[b]) / ELO_SCALE))
        if abs(p_a - 0.5) < 0.03:
            winner = None
        else:
            winner = song_ids[a] if rng.random() < p_a else song_ids[b]
        battles.append(Battle(
            song_a_id=song_ids[a],
            song_b_id=song_ids[b],
            winner_id=winner,
            confidence=confidence_for(max(p_a, 1 - p_a)).value
        ))

    # 3. Solve
    print(f"Simulating {n_battles} battles for {n_songs} songs (seed={seed})...")
    results = RankingManager.solve(battles, song_ids)

    # 4. Compare with the truth
    rated = [i for i, sid in enumerate(song_ids) if sid in results]
    est = np.array([results[song_ids[i]].rating for i in rated], dtype=float)
    rds = np.array([results[song_ids[i]].rd for i in rated], dtype=float)
    truth = true_elo[rated]

    true_rank = np.argsort(np.argsort(-truth))
    est_rank = np.argsort(np.argsort(-est))
    spearman = np.corrcoef(true_rank, est_rank)[0, 1]

    print("\n--- SIMULATION RESULTS ---")
    print(f"Rated songs:        {len(rated)}/{n_songs}")
    print(f"Spearman (rank):    {spearman:.3f}")
    print(f"Mean RD:            {rds.mean():.1f}")
    print(f"Rating spread:      {est.min():.0f} .. {est.max():.0f}")

    print(f"\n{'Rank':<5} | {'Song':<10} | {'True':>6} | {'WHR':>6} | {'RD':>4}")
    print("-" * 44)
    order = np.argsort(-est)
    for rank, j in enumerate(order[:15], 1):
        i = rated[j]
        print(f"{rank:<5} | {song_ids[i]:<10} | {true_elo[i]:6.0f} | {est[j]:6.0f} | {rds[j]:4.0f}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Simulate battles and check WHR recovery")
    parser.add_argument("--songs", type=int, default=30)
    parser.add_argument("--battles", type=int, default=200)
    parser.add_argument("--seed", type=int, default=7)
    args = parser.parse_args()
    simulate(args.songs, args.battles, args.seed)
