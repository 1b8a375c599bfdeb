import math
import logging
from typing import Dict, Iterable, List, NamedTuple, Tuple
import numpy as np

from app.core.comparison import Battle

logger = logging.getLogger(__name__)

# Constants for Elo conversion
# Strengths are natural-log odds (θ), Elo uses log10
# Elo = 400 * log10(e^θ) + 1500 = 400 * θ / ln(10) + 1500
ELO_SCALE = 400.0 / math.log(10)  # ≈ 173.72
ELO_BASE = 1500.0

# Row defaults for songs that have never battled
DEFAULT_RATING = 1500
DEFAULT_RD = 350

WHR_ITERATIONS = 15

# Gaussian prior on θ, centered at 0.
# sqrt(4.0) * ELO_SCALE ≈ 347, close to DEFAULT_RD for a barely-compared song.
PRIOR_VARIANCE = 4.0


class RatingResult(NamedTuple):
    rating: int
    rd: int


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class RankingManager:
    """
    Whole-History Rating over a Bradley-Terry model.

    Every solve refits all strengths from the complete battle history:
    - per-song Newton steps (Gauss-Seidel order, ascending song index)
    - fixed number of rounds, no early exit
    - Gaussian prior keeps undefeated / winless songs finite
    - RD from the inverse Hessian at the converged strengths (Laplace)
    """

    @staticmethod
    def theta_to_elo(theta: float) -> float:
        """
        Convert a log-strength (θ) to the Elo display scale.

        Bradley-Terry: P(i > j) = e^θi / (e^θi + e^θj)
        Elo: P(i > j) = 1 / (1 + 10^((Rj - Ri)/400))

        These are equivalent when R = 400 * θ / ln(10) + 1500
        """
        return ELO_SCALE * theta + ELO_BASE

    @staticmethod
    def variance_to_rd(variance: float) -> float:
        """Standard deviation of θ, on the Elo display scale."""
        return math.sqrt(variance) * ELO_SCALE

    @staticmethod
    def build_incidence(
        battles: Iterable[Battle],
        id_to_idx: Dict[str, int]
    ) -> Tuple[List[np.ndarray], List[np.ndarray]]:
        """
        Per-song opponent indices and target scores.

        The target score of a side only depends on the battle itself, so it is
        resolved once here instead of on every Newton step.
        Battles naming a song outside id_to_idx are dropped for both sides.
        """
        n = len(id_to_idx)
        opponents: List[List[int]] = [[] for _ in range(n)]
        actuals: List[List[float]] = [[] for _ in range(n)]
        skipped = 0

        for battle in battles:
            idx_a = id_to_idx.get(battle.song_a_id)
            idx_b = id_to_idx.get(battle.song_b_id)
            if idx_a is None or idx_b is None:
                skipped += 1
                continue

            opponents[idx_a].append(idx_b)
            actuals[idx_a].append(battle.target_score(is_a=True))
            opponents[idx_b].append(idx_a)
            actuals[idx_b].append(battle.target_score(is_a=False))

        if skipped:
            logger.debug(f"[WHR] Ignored {skipped} battles referencing unknown songs")

        return (
            [np.asarray(o, dtype=np.intp) for o in opponents],
            [np.asarray(a, dtype=np.float64) for a in actuals],
        )

    @staticmethod
    def newton_terms(
        strengths: np.ndarray,
        idx: int,
        opponents: np.ndarray,
        actuals: np.ndarray,
        prior_variance: float = PRIOR_VARIANCE
    ) -> Tuple[float, float]:
        """
        Gradient and Hessian of the log-posterior w.r.t. one song's θ.

        The prior term keeps the Hessian <= -1/prior_variance, so it never
        reaches zero.
        """
        theta = strengths[idx]
        # P(song beats opponent) = 1 / (1 + e^-(θi - θj))
        expected = 1.0 / (1.0 + np.exp(strengths[opponents] - theta))

        gradient = -theta / prior_variance + float(np.sum(actuals - expected))
        hessian = -1.0 / prior_variance - float(np.sum(expected * (1.0 - expected)))
        return gradient, hessian

    @staticmethod
    def solve(
        battles: Iterable[Battle],
        song_ids: List[str],
        iterations: int = WHR_ITERATIONS,
        prior_variance: float = PRIOR_VARIANCE
    ) -> Dict[str, RatingResult]:
        """
        Compute WHR ratings for every song that has at least one battle.

        Args:
            battles: All battles of one rating collection (order does not matter)
            song_ids: Every song of the collection; fixes the per-round update order
            iterations: Newton rounds over all battled songs
            prior_variance: Variance of the Gaussian prior on θ

        Returns:
            Dict mapping song_id to RatingResult(rating, rd), both rounded.
            Songs without battles are absent; callers fill in
            DEFAULT_RATING / DEFAULT_RD for them.
        """
        n = len(song_ids)
        if n == 0:
            return {}

        id_to_idx = {sid: i for i, sid in enumerate(song_ids)}
        opponents, actuals = RankingManager.build_incidence(battles, id_to_idx)

        battled = [i for i in range(n) if len(opponents[i]) > 0]
        if not battled:
            return {}

        strengths = np.zeros(n, dtype=np.float64)

        for _ in range(iterations):
            for i in battled:
                gradient, hessian = RankingManager.newton_terms(
                    strengths, i, opponents[i], actuals[i], prior_variance
                )
                strengths[i] -= gradient / hessian

        results: Dict[str, RatingResult] = {}
        for i in battled:
            _, hessian = RankingManager.newton_terms(
                strengths, i, opponents[i], actuals[i], prior_variance
            )
            rating = RankingManager.theta_to_elo(float(strengths[i]))
            rd = RankingManager.variance_to_rd(-1.0 / hessian)
            results[song_ids[i]] = RatingResult(
                rating=_round_half_up(rating),
                rd=_round_half_up(rd)
            )

        active = strengths[battled]
        logger.info(
            f"[WHR] Solved {len(battled)}/{n} songs, "
            f"θ range [{active.min():.3f}, {active.max():.3f}]"
        )
        return results
