"""Keyed-hash scoring of participants against a block seed."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
from typing import Callable, Dict, Optional

# 13 hex digits = 52 bits, the mantissa width of a double.
FLOAT_HEX_DIGITS = 13


@dataclass(frozen=True)
class ScoreComputation:
    """Score of a single participant.

    Attributes
    ----------
    participant_id : str
        Identifier of the scored participant.
    hmac : str
        Full hex digest of the keyed hash, published for verification.
    score : float
        Value in ``[0, 1)`` derived from the digest's leading bits.
    """

    participant_id: str
    hmac: str
    score: float


@dataclass(frozen=True)
class ScoringAlgorithm:
    """Definition of a scoring algorithm.

    Attributes
    ----------
    key : str
        Registry key, stored on every :class:`~blockdraw.models.Drawing` so
        that a drawing is always re-verified with the algorithm it was run with.
    scorer : Callable[[str, str, str], ScoreComputation]
        Callable taking ``(secret, seed, participant_id)``.
    description : Optional[str]
        Human-readable formula shown in verification reports.
    """

    key: str
    scorer: Callable[[str, str, str], ScoreComputation]
    description: Optional[str] = None

    def score(self, secret: str, seed: str, participant_id: str) -> ScoreComputation:
        return self.scorer(secret, seed, participant_id)


class AlgorithmRegistry:
    """Mutable registry mapping algorithm keys to definitions."""

    def __init__(self) -> None:
        self._algorithms: Dict[str, ScoringAlgorithm] = {}

    def register(self, algorithm: ScoringAlgorithm, *, replace: bool = False) -> None:
        """Register a scoring algorithm under its key.

        Parameters
        ----------
        algorithm : ScoringAlgorithm
            Algorithm to add to the registry.
        replace : bool, default: False
            When ``True`` an existing registration with the same key is
            overwritten. Otherwise a duplicate raises :class:`ValueError`.
        """
        if not replace and algorithm.key in self._algorithms:
            raise ValueError(f"Algorithm '{algorithm.key}' is already registered")
        self._algorithms[algorithm.key] = algorithm

    def get(self, key: str) -> ScoringAlgorithm:
        """Return the algorithm registered under ``key``."""
        try:
            return self._algorithms[key]
        except KeyError as exc:
            raise KeyError(f"Unknown scoring algorithm '{key}'") from exc

    def available_algorithms(self) -> Dict[str, ScoringAlgorithm]:
        """Return a copy of the registered algorithms keyed by identifier."""
        return dict(self._algorithms)


def hmac_sha512_hex(key: str, message: str) -> str:
    """Return the HMAC-SHA512 hex digest of ``message`` under ``key``."""
    return hmac.new(
        key.encode("utf-8"), message.encode("utf-8"), hashlib.sha512
    ).hexdigest()


def hex_to_float(digest: str, *, digits: int = FLOAT_HEX_DIGITS) -> float:
    """Map the leading ``digits`` hex characters of ``digest`` into ``[0, 1)``."""
    head = digest[:digits]
    if len(head) != digits:
        raise ValueError(f"digest must have at least {digits} hex digits")
    return int(head, 16) / float(16**digits)


def _hmac_sha512_float52(secret: str, seed: str, participant_id: str) -> ScoreComputation:
    digest = hmac_sha512_hex(secret, f"{seed}:{participant_id}")
    return ScoreComputation(
        participant_id=participant_id,
        hmac=digest,
        score=hex_to_float(digest),
    )


DEFAULT_SCORING_REGISTRY = AlgorithmRegistry()
DEFAULT_SCORING_REGISTRY.register(
    ScoringAlgorithm(
        key="hmac_sha512_float52",
        scorer=_hmac_sha512_float52,
        description=(
            "H = HMAC_SHA512(secret, seed:participantId)\n"
            "score = int(first 13 hex digits of H, 16) / 16^13\n"
            "Sort scores descending (ties: participant id ascending); "
            "the top N are the winners."
        ),
    )
)

__all__ = [
    "AlgorithmRegistry",
    "DEFAULT_SCORING_REGISTRY",
    "FLOAT_HEX_DIGITS",
    "ScoreComputation",
    "ScoringAlgorithm",
    "hex_to_float",
    "hmac_sha512_hex",
]
