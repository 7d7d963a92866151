"""
Lifecycle Status Model.

The fixed, totally ordered list of SDLC governance stages a project moves
through, plus ordering queries used by the status gate and progress views.

Forward-only progression is NOT enforced here: ``is_forward`` only reports
direction. The gate consults ``LIFECYCLE_ENFORCE_FORWARD`` (off by default).
"""

from __future__ import annotations

STAGES: tuple[str, ...] = (
    "Initiative Submitted",
    "Demand Prioritized",
    "Initiative Approved",
    "Kick Off",
    "ARF",
    "Deployment Preparation",
    "RCB",
    "Deployment",
    "PTR",
    "Go Live",
)

INITIAL_STAGE = STAGES[0]
FINAL_STAGE = STAGES[-1]

_INDEX = {name: i for i, name in enumerate(STAGES)}


def is_valid(stage: str) -> bool:
    return stage in _INDEX


def index_of(stage: str) -> int:
    """Position of ``stage`` in the lifecycle, or -1 when unknown."""
    return _INDEX.get(stage, -1)


def is_forward(from_stage: str, to_stage: str) -> bool:
    """True iff ``to_stage`` comes strictly after ``from_stage``."""
    return index_of(to_stage) > index_of(from_stage)


def next_stage(stage: str) -> str | None:
    idx = index_of(stage)
    if idx < 0 or idx + 1 >= len(STAGES):
        return None
    return STAGES[idx + 1]


def progress(stage: str) -> dict:
    """Progress summary for timeline displays."""
    idx = index_of(stage)
    return {
        "stage": stage,
        "index": idx,
        "total": len(STAGES),
        "percent": round((idx + 1) / len(STAGES) * 100) if idx >= 0 else 0,
        "next_stage": next_stage(stage),
        "stages": [
            {"name": name, "index": i, "reached": 0 <= i <= idx}
            for i, name in enumerate(STAGES)
        ],
    }
