import hashlib
import hmac
import unittest

from blockdraw.fairness import (
    AlgorithmRegistry,
    DEFAULT_SCORING_REGISTRY,
    ScoreComputation,
    ScoringAlgorithm,
    evaluate_draw,
    hex_to_float,
    hmac_sha512_hex,
    rank_scores,
    select_winners,
)


def _expected_score(secret: str, seed: str, participant_id: str) -> float:
    digest = hmac.new(
        secret.encode(), f"{seed}:{participant_id}".encode(), hashlib.sha512
    ).hexdigest()
    return int(digest[:13], 16) / 16**13


class TestScoring(unittest.TestCase):
    def test_hmac_matches_stdlib(self):
        expected = hmac.new(b"S", b"BLOCK123:a", hashlib.sha512).hexdigest()
        self.assertEqual(hmac_sha512_hex("S", "BLOCK123:a"), expected)
        self.assertEqual(len(expected), 128)

    def test_hex_to_float_bounds(self):
        self.assertEqual(hex_to_float("0" * 128), 0.0)
        top = hex_to_float("f" * 128)
        self.assertLess(top, 1.0)
        self.assertGreater(top, 0.999999)
        self.assertEqual(hex_to_float("8" + "0" * 12), 0.5)

    def test_hex_to_float_rejects_short_digest(self):
        with self.assertRaises(ValueError):
            hex_to_float("abc")

    def test_default_algorithm_scores(self):
        algorithm = DEFAULT_SCORING_REGISTRY.get("hmac_sha512_float52")
        result = algorithm.score("S", "BLOCK123", "a")
        self.assertEqual(result.participant_id, "a")
        self.assertEqual(result.hmac, hmac_sha512_hex("S", "BLOCK123:a"))
        self.assertEqual(result.score, _expected_score("S", "BLOCK123", "a"))
        self.assertIn("HMAC_SHA512", algorithm.description)

    def test_registry_rejects_duplicates_and_unknown_keys(self):
        registry = AlgorithmRegistry()
        algo = ScoringAlgorithm(
            key="const", scorer=lambda s, seed, p: ScoreComputation(p, "00", 0.5)
        )
        registry.register(algo)
        with self.assertRaises(ValueError):
            registry.register(algo)
        registry.register(algo, replace=True)
        self.assertEqual(list(registry.available_algorithms()), ["const"])
        with self.assertRaises(KeyError):
            registry.get("missing")


class TestEvaluateDraw(unittest.TestCase):
    def test_concrete_scenario(self):
        evaluation = evaluate_draw("S", "BLOCK123", ["a", "b", "c"], 2)

        expected = {p: _expected_score("S", "BLOCK123", p) for p in "abc"}
        ordered = sorted(expected, key=lambda p: (-expected[p], p))
        self.assertEqual(evaluation.winners, ordered[:2])
        for p, score in expected.items():
            self.assertEqual(evaluation.scores[p].score, score)
        self.assertEqual([s.participant_id for s in evaluation.ranking], ordered)

        # repeatable
        again = evaluate_draw("S", "BLOCK123", ["a", "b", "c"], 2)
        self.assertEqual(again, evaluation)

    def test_order_of_entries_does_not_matter(self):
        first = evaluate_draw("secret", "seed", ["x", "y", "z", "w"], 3)
        second = evaluate_draw("secret", "seed", ["w", "z", "y", "x"], 3)
        self.assertEqual(first.winners, second.winners)
        self.assertEqual(first.scores, second.scores)

    def test_different_seed_changes_scores(self):
        first = evaluate_draw("secret", "seed-1", ["x"], 1)
        second = evaluate_draw("secret", "seed-2", ["x"], 1)
        self.assertNotEqual(first.scores["x"].hmac, second.scores["x"].hmac)

    def test_empty_participants(self):
        evaluation = evaluate_draw("S", "BLOCK123", [], 3)
        self.assertEqual(evaluation.scores, {})
        self.assertEqual(evaluation.ranking, [])
        self.assertEqual(evaluation.winners, [])

    def test_winner_count_is_bounded_by_distinct_entries(self):
        participants = ["p1", "p2", "p2", "p3"]
        evaluation = evaluate_draw("S", "seed", participants, 10)
        self.assertEqual(len(evaluation.winners), 3)
        self.assertTrue(set(evaluation.winners) <= set(participants))

        evaluation = evaluate_draw("S", "seed", participants, 2)
        self.assertEqual(len(evaluation.winners), 2)

    def test_rejects_non_positive_winner_count(self):
        with self.assertRaises(ValueError):
            evaluate_draw("S", "seed", ["a"], 0)

    def test_ties_break_by_participant_id(self):
        registry = AlgorithmRegistry()
        registry.register(
            ScoringAlgorithm(
                key="flat",
                scorer=lambda secret, seed, p: ScoreComputation(p, "00", 0.25),
            )
        )
        evaluation = evaluate_draw(
            "S", "seed", ["carol", "alice", "bob"], 2, algorithm_key="flat", registry=registry
        )
        self.assertEqual(evaluation.winners, ["alice", "bob"])

    def test_unknown_algorithm(self):
        with self.assertRaises(KeyError):
            evaluate_draw("S", "seed", ["a"], 1, algorithm_key="nope")


class TestRanking(unittest.TestCase):
    def test_rank_and_select(self):
        scores = {
            "b": ScoreComputation("b", "h", 0.9),
            "a": ScoreComputation("a", "h", 0.9),
            "c": ScoreComputation("c", "h", 0.1),
        }
        self.assertEqual([s.participant_id for s in rank_scores(scores.values())], ["a", "b", "c"])
        self.assertEqual(select_winners(scores, 2), ["a", "b"])
        self.assertEqual(select_winners(list(scores.values()), 1), ["a"])
        with self.assertRaises(ValueError):
            select_winners(scores, 0)


if __name__ == "__main__":
    unittest.main()
