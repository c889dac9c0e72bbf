"""Deterministic, auditable winner selection."""

from .engine import FairnessEvaluation, evaluate_draw, rank_scores, select_winners
from .scoring import (
    AlgorithmRegistry,
    DEFAULT_SCORING_REGISTRY,
    ScoreComputation,
    ScoringAlgorithm,
    hex_to_float,
    hmac_sha512_hex,
)

__all__ = [
    "AlgorithmRegistry",
    "DEFAULT_SCORING_REGISTRY",
    "FairnessEvaluation",
    "ScoreComputation",
    "ScoringAlgorithm",
    "evaluate_draw",
    "hex_to_float",
    "hmac_sha512_hex",
    "rank_scores",
    "select_winners",
]
