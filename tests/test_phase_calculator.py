"""Derived phase from weighted task progress."""

import itertools

import pytest

from app.core.exceptions import ValidationError
from app.services.phase_calculator import (
    calculate_phase,
    calculate_progress,
    summarize_tasks,
)


def _tasks(*pairs):
    return [{"status": s, "effort_weight": w} for s, w in pairs]


class TestCalculatePhase:
    def test_no_tasks_is_design(self):
        assert calculate_phase(None, []) == "design"

    def test_zero_total_weight_is_design(self):
        assert calculate_phase(None, _tasks(("done", 0), ("in_progress", 0))) == "design"

    def test_nothing_started_is_design(self):
        assert calculate_phase(None, _tasks(("todo", 3), ("todo", 2))) == "design"

    def test_partial_progress_is_build(self):
        assert calculate_phase(None, _tasks(("done", 1), ("todo", 1))) == "build"

    def test_inflight_counts_half(self):
        # 5 + 0.5 * 5 = 7.5 of 10
        tasks = _tasks(("done", 5), ("in_progress", 5))
        assert calculate_progress(tasks) == pytest.approx(0.75)
        assert calculate_phase(None, tasks) == "build"

    def test_only_inflight_is_build(self):
        assert calculate_phase(None, _tasks(("in_progress", 1))) == "build"

    def test_all_done_is_launch(self):
        assert calculate_phase(None, _tasks(("done", 2), ("done", 3))) == "launch"

    def test_zero_weight_todo_does_not_block_launch(self):
        assert calculate_phase(None, _tasks(("done", 4), ("todo", 0))) == "launch"

    def test_refine_is_never_derived(self):
        seen = set()
        for combo in itertools.product(["todo", "in_progress", "done"], repeat=3):
            seen.add(calculate_phase(None, _tasks(*((s, 1) for s in combo))))
        assert "refine" not in seen
        assert seen == {"design", "build", "launch"}

    def test_order_independent(self):
        pairs = [("done", 3), ("in_progress", 2), ("todo", 1), ("done", 0)]
        results = {calculate_phase(None, _tasks(*perm)) for perm in itertools.permutations(pairs)}
        assert results == {"build"}


class TestOverride:
    def test_override_wins_over_tasks(self):
        assert calculate_phase("refine", _tasks(("done", 1))) == "refine"

    def test_hold_states_returned_verbatim(self):
        assert calculate_phase("on_hold", _tasks(("done", 1))) == "on_hold"
        assert calculate_phase("cancelled", []) == "cancelled"

    def test_legacy_override_is_migrated(self):
        assert calculate_phase("execution", []) == "build"

    def test_empty_override_is_ignored(self):
        assert calculate_phase("", _tasks(("done", 1))) == "launch"


class TestInputValidation:
    def test_negative_weight_rejected(self):
        with pytest.raises(ValidationError):
            summarize_tasks(_tasks(("done", -1)))

    def test_bool_weight_rejected(self):
        with pytest.raises(ValidationError):
            summarize_tasks(_tasks(("done", True)))

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError) as exc:
            summarize_tasks(_tasks(("blocked", 1)))
        assert "status" in exc.value.details

    def test_missing_weight_defaults_to_one(self):
        summary = summarize_tasks([{"status": "done"}, {"status": "todo", "effort_weight": None}])
        assert summary["done"] == 1
        assert summary["total"] == 2
        assert summary["count"] == 2

    def test_summary_accepts_objects(self, team, make_work_item):
        item = make_work_item(team, tasks=[("done", 2), ("in_progress", 4)])
        summary = summarize_tasks(item.tasks)
        assert summary == {"todo": 0, "in_progress": 4, "done": 2, "total": 6, "count": 2}
        assert item.phase == "build"
