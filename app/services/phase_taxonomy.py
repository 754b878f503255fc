"""
Phase Taxonomy — canonical lifecycle phases, legacy names and override states.

    design → build → refine → launch

Older rows may still carry the five-phase vocabulary
(research / planning / execution / review / complete); ``migrate_phase``
maps those to the canonical four and is idempotent.  ``on_hold`` and
``cancelled`` are override states: they can be set on a work item but
are not phases and cannot be granted.
"""

from app.core.exceptions import ValidationError

PHASE_ORDER: tuple[str, ...] = ("design", "build", "refine", "launch")

INITIAL_PHASE = "design"
ACTIVE_PHASE = "build"
TERMINAL_PHASE = "launch"

LEGACY_PHASE_MAP: dict[str, str] = {
    "research": "design",
    "planning": "design",
    "execution": "build",
    "review": "refine",
    "complete": "launch",
}

OVERRIDE_STATES: tuple[str, ...] = ("on_hold", "cancelled")

PHASE_CONFIG: dict[str, dict] = {
    "design": {
        "id": "design",
        "name": "Design",
        "tagline": "Shape your approach, define your path",
        "color": "#8B5CF6",
    },
    "build": {
        "id": "build",
        "name": "Build",
        "tagline": "Execute with clarity, create with care",
        "color": "#10B981",
    },
    "refine": {
        "id": "refine",
        "name": "Refine",
        "tagline": "Validate ideas, sharpen solutions",
        "color": "#F59E0B",
    },
    "launch": {
        "id": "launch",
        "name": "Launch",
        "tagline": "Release, measure, and evolve",
        "color": "#22C55E",
    },
}

_OVERRIDE_LABELS = {"on_hold": "On Hold", "cancelled": "Cancelled"}


def _normalise(value) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip().lower() or None


def migrate_phase(phase_like) -> str:
    """Return the canonical phase for a canonical or legacy name.

    Raises:
        ValidationError: ``details={"phase": ...}`` for anything else,
            override states included.
    """
    text = _normalise(phase_like)
    if text in PHASE_CONFIG:
        return text
    if text in LEGACY_PHASE_MAP:
        return LEGACY_PHASE_MAP[text]
    raise ValidationError(
        f"Unknown phase {phase_like!r}",
        details={"phase": f"Must be one of: {', '.join(PHASE_ORDER)}"},
    )


def resolve_lifecycle_state(value) -> str:
    """Canonical phase or override state for ``value``."""
    text = _normalise(value)
    if text in OVERRIDE_STATES:
        return text
    if text in PHASE_CONFIG or text in LEGACY_PHASE_MAP:
        return migrate_phase(text)
    raise ValidationError(
        f"Unknown lifecycle state {value!r}",
        details={"status": f"Must be one of: {', '.join((*PHASE_ORDER, *OVERRIDE_STATES))}"},
    )


def is_canonical_phase(value) -> bool:
    return _normalise(value) in PHASE_CONFIG


def is_override_state(value) -> bool:
    return _normalise(value) in OVERRIDE_STATES


def phase_index(phase_like) -> int:
    return PHASE_ORDER.index(migrate_phase(phase_like))


def phase_label(value) -> str:
    state = resolve_lifecycle_state(value)
    if state in _OVERRIDE_LABELS:
        return _OVERRIDE_LABELS[state]
    return PHASE_CONFIG[state]["name"]
