import math
import random
import unittest
from app.core.comparison import Battle
from app.core.ranking import RankingManager, RatingResult


def win(a, b, confidence="obvious"):
    return Battle(song_a_id=a, song_b_id=b, winner_id=a, confidence=confidence)


def draw(a, b):
    return Battle(song_a_id=a, song_b_id=b, winner_id=None)


class TestRankingLogic(unittest.TestCase):
    def test_theta_to_elo(self):
        # θ = 0 -> Elo 1500
        self.assertAlmostEqual(RankingManager.theta_to_elo(0.0), 1500.0)
        # 10:1 odds -> +400
        self.assertAlmostEqual(RankingManager.theta_to_elo(math.log(10)), 1900.0)
        self.assertAlmostEqual(RankingManager.theta_to_elo(-math.log(10)), 1100.0)

    def test_empty_inputs(self):
        self.assertEqual(RankingManager.solve([], []), {})
        self.assertEqual(RankingManager.solve([win("A", "B")], []), {})

    def test_neutral_start_returns_nothing(self):
        # Unbattled songs are left to the caller's defaults
        self.assertEqual(RankingManager.solve([], ["A", "B", "C"]), {})

    def test_unbattled_song_is_absent(self):
        results = RankingManager.solve([win("A", "B")], ["A", "B", "C"])
        self.assertEqual(set(results), {"A", "B"})

    def test_single_round_matches_hand_computation(self):
        # Round 1: A: g=0.5, h=-0.5 -> θA=1.0
        #          B: e=1/(1+e^1)=0.2689 -> θB=-0.6022
        results = RankingManager.solve([win("A", "B")], ["A", "B"], iterations=1)
        self.assertEqual(results["A"], RatingResult(rating=1674, rd=278))
        self.assertEqual(results["B"], RatingResult(rating=1395, rd=278))

    def test_zero_iterations_reports_prior_plus_curvature(self):
        # θ stays 0: h = -1/4 - 0.25 = -0.5 -> rd = sqrt(2) * 173.72 ≈ 246
        results = RankingManager.solve([win("A", "B")], ["A", "B"], iterations=0)
        self.assertEqual(results["A"], RatingResult(rating=1500, rd=246))

    def test_single_win_symmetry(self):
        forward = RankingManager.solve([win("A", "B")], ["A", "B"])
        mirrored = RankingManager.solve([win("B", "A")], ["A", "B"])

        self.assertGreater(forward["A"].rating, 1500)
        self.assertLess(forward["B"].rating, 1500)
        self.assertEqual(forward["A"], mirrored["B"])
        self.assertEqual(forward["B"], mirrored["A"])
        # Both ends sit equally far from the center
        self.assertEqual(forward["A"].rating - 1500, 1500 - forward["B"].rating)

    def test_draw_invariance(self):
        for battle in (draw("A", "B"), draw("B", "A")):
            results = RankingManager.solve([battle], ["A", "B"])
            self.assertEqual(results["A"].rating, 1500)
            self.assertEqual(results["B"].rating, 1500)
            self.assertEqual(results["A"].rd, results["B"].rd)

    def test_draw_ignores_confidence(self):
        plain = RankingManager.solve([draw("A", "B")], ["A", "B"])
        labelled = RankingManager.solve(
            [Battle(song_a_id="A", song_b_id="B", winner_id=None, confidence="coin_flip")],
            ["A", "B"]
        )
        self.assertEqual(plain, labelled)

    def test_monotonic_confidence(self):
        separations = []
        for confidence in ("coin_flip", "slight", "clear", "obvious"):
            results = RankingManager.solve([win("A", "B", confidence)], ["A", "B"])
            separations.append(results["A"].rating - results["B"].rating)

        print(f"\nSeparation by confidence: {separations}")
        self.assertGreater(separations[0], 0)
        for weaker, stronger in zip(separations, separations[1:]):
            self.assertLessEqual(weaker, stronger)

    def test_unknown_confidence_scores_like_obvious(self):
        obvious = RankingManager.solve([win("A", "B", "obvious")], ["A", "B"])
        unknown = RankingManager.solve([win("A", "B", "certain")], ["A", "B"])
        missing = RankingManager.solve([win("A", "B", None)], ["A", "B"])
        self.assertEqual(obvious, unknown)
        self.assertEqual(obvious, missing)

    def test_rd_shrinks_with_evidence(self):
        opponents = [f"O{i}" for i in range(6)]
        song_ids = ["A"] + opponents
        battles = []
        rds = []
        for i, opp in enumerate(opponents):
            # Alternate wins and losses
            if i % 2 == 0:
                battles.append(win("A", opp, "clear"))
            else:
                battles.append(win(opp, "A", "clear"))
            rds.append(RankingManager.solve(battles, song_ids)["A"].rd)

        print(f"\nRD after each battle: {rds}")
        for before, after in zip(rds, rds[1:]):
            self.assertLess(after, before)
        self.assertTrue(all(rd >= 0 for rd in rds))

    def test_unanimous_record_stays_finite(self):
        opponents = [f"O{i}" for i in range(50)]
        battles = [win("H", opp) for opp in opponents]
        results = RankingManager.solve(battles, ["H"] + opponents)

        hub = results["H"]
        self.assertTrue(math.isfinite(hub.rating))
        self.assertTrue(math.isfinite(hub.rd))
        self.assertGreater(hub.rating, max(results[o].rating for o in opponents))

    def test_idempotence(self):
        rng = random.Random(3)
        song_ids = [f"S{i}" for i in range(12)]
        battles = []
        for _ in range(60):
            a, b = rng.sample(song_ids, 2)
            winner = rng.choice([a, b, None])
            battles.append(Battle(
                song_a_id=a, song_b_id=b, winner_id=winner,
                confidence=rng.choice(["obvious", "clear", "slight", "coin_flip"])
            ))

        first = RankingManager.solve(battles, song_ids)
        second = RankingManager.solve(battles, song_ids)
        self.assertEqual(first, second)

        # Battle order does not matter either
        shuffled = list(battles)
        rng.shuffle(shuffled)
        self.assertEqual(first, RankingManager.solve(shuffled, song_ids))

    def test_concrete_scenario(self):
        battles = [
            win("X", "Y", "obvious"),
            win("Z", "Y", "slight"),
        ]
        results = RankingManager.solve(battles, ["X", "Y", "Z"])
        print(f"\nX/Y/Z ratings: {results}")
        self.assertLess(results["Y"].rating, 1500)
        self.assertLess(1500, results["Z"].rating)
        self.assertLess(results["Z"].rating, results["X"].rating)

    def test_repeated_battles_count(self):
        once = RankingManager.solve([win("A", "B")], ["A", "B"])
        thrice = RankingManager.solve([win("A", "B")] * 3, ["A", "B"])
        self.assertGreater(thrice["A"].rating, once["A"].rating)
        self.assertLess(thrice["A"].rd, once["A"].rd)

    def test_battles_with_unknown_songs_are_ignored(self):
        base = RankingManager.solve([win("A", "B")], ["A", "B"])
        with_stray = RankingManager.solve([win("A", "B"), win("A", "Q"), win("Q", "B")], ["A", "B"])
        self.assertEqual(base, with_stray)


if __name__ == "__main__":
    unittest.main()
