"""Winner selection from a seed, a secret and a set of participants."""

from __future__ import annotations

from dataclasses import dataclass, field
from collections.abc import Mapping
from typing import Iterable, Optional

from ..models.drawing import DEFAULT_ALGORITHM_KEY
from .scoring import AlgorithmRegistry, DEFAULT_SCORING_REGISTRY, ScoreComputation


@dataclass(frozen=True)
class FairnessEvaluation:
    """Outcome of a draw.

    Attributes
    ----------
    scores : dict[str, ScoreComputation]
        Score of every distinct participant keyed by participant id.
    ranking : list[ScoreComputation]
        All scores, best first.
    winners : list[str]
        Participant ids of the winners, best first.
    """

    scores: dict[str, ScoreComputation] = field(default_factory=dict)
    ranking: list[ScoreComputation] = field(default_factory=list)
    winners: list[str] = field(default_factory=list)


def rank_scores(scores: Iterable[ScoreComputation]) -> list[ScoreComputation]:
    """Return ``scores`` sorted by score descending, then participant id ascending."""
    return sorted(scores, key=lambda s: (-s.score, s.participant_id))


def select_winners(
    scores: Mapping[str, ScoreComputation] | Iterable[ScoreComputation],
    winners_requested: int,
) -> list[str]:
    """Return the ids of the ``winners_requested`` best-ranked participants."""
    if winners_requested < 1:
        raise ValueError("winners_requested must be at least 1")
    values = scores.values() if isinstance(scores, Mapping) else scores
    return [s.participant_id for s in rank_scores(values)[:winners_requested]]


def evaluate_draw(
    secret: str,
    seed: str,
    participant_ids: Iterable[str],
    winners_requested: int,
    *,
    algorithm_key: str = DEFAULT_ALGORITHM_KEY,
    registry: Optional[AlgorithmRegistry] = None,
) -> FairnessEvaluation:
    """Score every participant and pick the winners.

    The result depends only on the arguments: the same ``secret``, ``seed``,
    participant set and ``winners_requested`` always give the same scores and
    winners, regardless of the order participants are supplied in.

    Parameters
    ----------
    secret : str
        The drawing's secret, used as HMAC key.
    seed : str
        Block id of the seed block.
    participant_ids : Iterable[str]
        Entrants. Duplicates are ignored.
    winners_requested : int
        Maximum number of winners, at least 1.
    algorithm_key : str, default: ``"hmac_sha512_float52"``
        Key of the scoring algorithm.
    registry : Optional[AlgorithmRegistry], default: None
        Registry to resolve ``algorithm_key`` in. The default registry is used
        when omitted.

    Returns
    -------
    FairnessEvaluation
        Scores, full ranking and winners. Empty when there are no participants.
    """
    if winners_requested < 1:
        raise ValueError("winners_requested must be at least 1")
    algorithm = (registry or DEFAULT_SCORING_REGISTRY).get(algorithm_key)

    scores: dict[str, ScoreComputation] = {}
    for participant_id in participant_ids:
        if participant_id in scores:
            continue
        scores[participant_id] = algorithm.score(secret, seed, participant_id)

    ranking = rank_scores(scores.values())
    winners = [s.participant_id for s in ranking[:winners_requested]]
    return FairnessEvaluation(scores=scores, ranking=ranking, winners=winners)


__all__ = [
    "FairnessEvaluation",
    "evaluate_draw",
    "rank_scores",
    "select_winners",
]
