"""Independent re-computation and human-readable reports of finalized draws."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .announce import block_link
from .errors import StateConflictError
from .fairness import (
    AlgorithmRegistry,
    DEFAULT_SCORING_REGISTRY,
    evaluate_draw,
    rank_scores,
)
from .fairness.scoring import ScoreComputation
from .models import Drawing, DrawItem, ItemState

DEFAULT_EXPLORER = "https://tronscan.org/#/block/"
SUMMARY_TOP = 10


def verify_item(
    drawing: Drawing,
    item: DrawItem,
    *,
    registry: Optional[AlgorithmRegistry] = None,
) -> Dict[str, Any]:
    """Recompute ``item``'s scores and winners from its stored inputs.

    Returns a dict with ``ok`` and a list of ``mismatches``; an empty list
    means every stored HMAC, score and winner matches the recomputation.

    Raises
    ------
    StateConflictError
        If the item is not finalized yet.
    """
    if item.state != ItemState.FINALIZED.value or item.seed_block_id is None:
        raise StateConflictError(
            f"item {item.item_key!r} of drawing {drawing.id!r} is not finalized"
        )

    evaluation = evaluate_draw(
        drawing.secret,
        item.seed_block_id,
        item.participant_ids,
        item.winners_requested,
        algorithm_key=drawing.algorithm_key,
        registry=registry,
    )

    mismatches: list[str] = []
    stored = item.score_map
    if set(stored) != set(evaluation.scores):
        mismatches.append(
            "scored participants differ: stored={stored} recomputed={recomputed}".format(
                stored=sorted(stored), recomputed=sorted(evaluation.scores)
            )
        )
    for participant_id, expected in evaluation.scores.items():
        actual = stored.get(participant_id)
        if actual is None:
            continue
        if actual.hmac != expected.hmac:
            mismatches.append(f"HMAC mismatch for {participant_id}")
        if actual.score != expected.score:
            mismatches.append(
                f"score mismatch for {participant_id}: stored={actual.score} recomputed={expected.score}"
            )
    if list(item.winners or []) != evaluation.winners:
        mismatches.append(
            f"winner mismatch: stored={list(item.winners or [])} recomputed={evaluation.winners}"
        )

    return {
        "ok": not mismatches,
        "drawing_id": drawing.id,
        "item_key": item.item_key,
        "seed": item.seed_block_id,
        "seed_block_number": item.seed_block_number,
        "winners": evaluation.winners,
        "mismatches": mismatches,
    }


def _calculation(drawing: Drawing, registry: Optional[AlgorithmRegistry]) -> str:
    algorithm = (registry or DEFAULT_SCORING_REGISTRY).get(drawing.algorithm_key)
    return algorithm.description or algorithm.key


def _ranking(item: DrawItem) -> list[ScoreComputation]:
    return rank_scores(
        ScoreComputation(participant_id=s.participant_id, hmac=s.hmac, score=s.score)
        for s in item.scores
    )


def _block_lines(item: DrawItem, explorer_url: str) -> list[str]:
    if item.seed_block_number is not None and item.seed_block_id:
        return [
            f"Seed block: {item.seed_block_number} ({block_link(explorer_url, item.seed_block_id)})",
            f"Seed: {item.seed_block_id}",
        ]
    if item.target_block_number is not None:
        return [f"Seed block target: {item.target_block_number} (awaiting block data)"]
    return ["Seed block: (unavailable)"]


def build_summary(
    drawing: Drawing,
    *,
    explorer_url: str = DEFAULT_EXPLORER,
    registry: Optional[AlgorithmRegistry] = None,
) -> str:
    """Short verification summary: the top entrants of every item.

    While any item still awaits its seed only a pending notice is returned.
    """
    awaiting = [
        it.prize for it in drawing.items if it.state == ItemState.AWAITING_SEED.value
    ]
    if awaiting:
        names = ", ".join(f'"{p}"' for p in awaiting)
        return (
            f"Verification pending. Waiting for block seed for: {names}. "
            "Please try again after all items are rolled."
        )

    lines = [f"Drawing: {drawing.id}", f"Secret: {drawing.secret}", ""]
    for item in drawing.items:
        lines.append(f"Prize: {item.prize}")
        lines.append(
            f"Winners: {item.winners_requested} | Entries: {len(item.entries)} | State: {item.state}"
        )
        lines.extend(_block_lines(item, explorer_url))
        ranking = _ranking(item)
        winners = set(item.winners or [])
        if ranking:
            lines.append(f"Top entrants (top {SUMMARY_TOP} shown):")
            for pos, s in enumerate(ranking[:SUMMARY_TOP], start=1):
                star = " *" if s.participant_id in winners else ""
                lines.append(f"{pos}. {s.participant_id} - {s.score:.12f}{star}")
            if len(ranking) > SUMMARY_TOP:
                lines.append(f"...and {len(ranking) - SUMMARY_TOP} more (see details report).")
        elif item.entries:
            shown = ", ".join(item.participant_ids[:SUMMARY_TOP])
            more = ", ..." if len(item.entries) > SUMMARY_TOP else ""
            lines.append(f"Entrants ({len(item.entries)}): {shown}{more}")
        else:
            lines.append("(no entrants)")
        lines.append("")

    lines.append("Calculation:")
    lines.append(_calculation(drawing, registry))
    return "\n".join(lines)


def build_details_report(
    drawing: Drawing,
    *,
    explorer_url: str = DEFAULT_EXPLORER,
    registry: Optional[AlgorithmRegistry] = None,
) -> str:
    """Full report: every entrant with HMAC and score, sorted best first."""
    lines: list[str] = []
    for item in drawing.items:
        lines.append(f"=== Prize: {item.prize} ===")
        lines.append(
            f"Winners: {item.winners_requested} | Entries: {len(item.entries)} | State: {item.state}"
        )
        lines.extend(_block_lines(item, explorer_url))
        ranking = _ranking(item)
        if ranking:
            lines.append("Full entrant list (sorted by score desc):")
            for pos, s in enumerate(ranking, start=1):
                lines.append(f"{pos}. {s.participant_id} - {s.score:.12f} - HMAC: {s.hmac}")
        elif item.entries:
            lines.append("Entrants (no scores computed):")
            lines.extend(f"- {pid}" for pid in item.participant_ids)
        else:
            lines.append("(no entrants)")
        if item.winners:
            lines.append("Winners: " + ", ".join(item.winners))
        lines.append("")

    lines.append("How winners are calculated:")
    lines.append(_calculation(drawing, registry))
    return "\n".join(lines)


def export_audit(drawing: Drawing) -> Dict[str, Any]:
    """Return a JSON-serialisable audit document anyone can re-run."""
    return {
        "metadata": {
            "tool": "blockdraw",
            "generated_at_utc": datetime.now(timezone.utc).isoformat(),
            "drawing_id": drawing.id,
            "scope_id": drawing.scope_id,
            "algorithm_key": drawing.algorithm_key,
            "secret": drawing.secret,
        },
        "items": [
            {
                "item_key": item.item_key,
                "prize": item.prize,
                "state": item.state,
                "winners_requested": item.winners_requested,
                "seed_block_number": item.seed_block_number,
                "seed": item.seed_block_id,
                # Sorted entrants so the document is byte-stable across runs.
                "entrants": sorted(item.participant_ids),
                "scores": [
                    {"participant_id": s.participant_id, "hmac": s.hmac, "score": s.score}
                    for s in _ranking(item)
                ],
                "winners": list(item.winners or []),
            }
            for item in drawing.items
        ],
    }


def export_audit_str(drawing: Drawing) -> str:
    return json.dumps(export_audit(drawing), indent=2)


__all__ = [
    "build_details_report",
    "build_summary",
    "export_audit",
    "export_audit_str",
    "verify_item",
]
