import os
import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.engine import make_url

from peopleflow.database import SessionLocal
from peopleflow.models.person import Person
from peopleflow.models.workflow_instance import TERMINAL_STEP_STATUSES, WorkflowInstance, WorkflowInstanceStep
from peopleflow.services import template_store
from peopleflow.services.due_dates import as_utc
from peopleflow.services.instantiation import instantiate
from peopleflow.services.step_progression import (
    ProgressionError,
    advance_step,
    assign_step,
    cancel_instance,
    hold_instance,
    resume_instance,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _start(steps, edges=(), org_id=1, **fields):
    fields.setdefault("name", "Onboarding")
    fields.setdefault("status", "active")
    db = SessionLocal()
    try:
        template = template_store.create_template(db, org_id, "admin-1", fields, steps, list(edges))
        db.commit()
        template_id = template.id
    finally:
        db.close()

    instance = instantiate(template_id, "person", "42", org_id, "user-1", now=T0)
    return instance.id


def _linear(count):
    return [{"id": f"s{i}", "name": f"S{i + 1}", "order_index": i} for i in range(count)]


def _state(instance_id):
    db = SessionLocal()
    try:
        instance = db.query(WorkflowInstance).filter(WorkflowInstance.id == instance_id).one()
        steps = (
            db.query(WorkflowInstanceStep)
            .filter(WorkflowInstanceStep.instance_id == instance_id)
            .order_by(WorkflowInstanceStep.order_index.asc())
            .all()
        )
        return instance, steps
    finally:
        db.close()


def _assert_counter_matches_steps(instance_id):
    instance, steps = _state(instance_id)
    terminal = sum(1 for step in steps if step.status in TERMINAL_STEP_STATUSES)
    assert instance.completed_steps == terminal
    assert 0 <= instance.completed_steps <= instance.total_steps


def test_completing_first_step_promotes_the_next():
    instance_id = _start(_linear(3))
    _, (s1, s2, s3) = _state(instance_id)

    result = advance_step(s1.id, "completed", "user-1", now=T0 + timedelta(hours=1))
    assert result.ok
    assert result.promoted_step.id == s2.id

    instance, (s1, s2, s3) = _state(instance_id)
    assert instance.status == "in_progress"
    assert instance.completed_steps == 1
    assert s1.status == "completed"
    assert s1.completed_by_id == "user-1"
    assert as_utc(s1.completed_at) == T0 + timedelta(hours=1)
    assert s2.status == "in_progress"
    assert as_utc(s2.started_at) == T0 + timedelta(hours=1)
    assert s3.status == "pending"


def test_predecessor_anchored_due_date_is_set_on_completion():
    instance_id = _start(
        [
            {"id": "s1", "name": "S1", "order_index": 0},
            {"id": "s2", "name": "S2", "order_index": 1, "due_offset_days": 2, "due_offset_from": "previous_step_completion"},
        ]
    )
    _, (s1, s2) = _state(instance_id)
    assert s2.due_at is None

    advance_step(s1.id, "completed", "user-1", now=T0 + timedelta(days=5))

    _, (s1, s2) = _state(instance_id)
    assert as_utc(s2.due_at) == T0 + timedelta(days=7)


def test_completing_all_steps_completes_instance():
    instance_id = _start(_linear(3))
    finished_at = T0 + timedelta(days=2)

    for index in range(3):
        _, steps = _state(instance_id)
        result = advance_step(steps[index].id, "completed", "user-1", now=finished_at)
        assert result.ok
        _assert_counter_matches_steps(instance_id)

    assert result.promoted_step is None

    instance, steps = _state(instance_id)
    assert instance.status == "completed"
    assert instance.completed_steps == instance.total_steps == 3
    assert as_utc(instance.completed_at) == finished_at


def test_terminal_step_cannot_be_changed():
    instance_id = _start(_linear(2))
    _, (s1, _s2) = _state(instance_id)
    advance_step(s1.id, "completed", "user-1", now=T0)
    before, before_steps = _state(instance_id)

    for target in ("skipped", "in_progress", "pending", "completed"):
        result = advance_step(s1.id, target, "user-2")
        assert result.error == ProgressionError.INVALID_TRANSITION

    after, after_steps = _state(instance_id)
    assert after.completed_steps == before.completed_steps
    assert [(s.status, s.completed_by_id) for s in after_steps] == [
        (s.status, s.completed_by_id) for s in before_steps
    ]


def test_skipping_counts_as_progress():
    instance_id = _start(_linear(2))
    _, (s1, s2) = _state(instance_id)

    result = advance_step(s1.id, "skipped", "user-1", notes="Not needed")
    assert result.ok

    instance, (s1, s2) = _state(instance_id)
    assert instance.completed_steps == 1
    assert s1.notes == "Not needed"
    assert s2.status == "in_progress"


def test_pending_step_can_be_completed_directly_without_promoting_a_second_step():
    instance_id = _start(_linear(3))
    _, (s1, s2, s3) = _state(instance_id)

    result = advance_step(s3.id, "completed", "user-1")
    assert result.ok
    assert result.promoted_step is None

    instance, (s1, s2, s3) = _state(instance_id)
    assert instance.completed_steps == 1
    assert [s1.status, s2.status, s3.status] == ["in_progress", "pending", "completed"]
    _assert_counter_matches_steps(instance_id)


def test_only_one_sibling_in_progress_at_a_time():
    instance_id = _start(_linear(2))
    _, (s1, s2) = _state(instance_id)

    result = advance_step(s2.id, "in_progress", "user-1")
    assert result.error == ProgressionError.INVALID_TRANSITION

    _, (s1, s2) = _state(instance_id)
    assert s2.status == "pending"


def test_same_status_and_unknown_status_are_rejected():
    instance_id = _start(_linear(2))
    _, (s1, _s2) = _state(instance_id)

    assert advance_step(s1.id, "in_progress").error == ProgressionError.INVALID_TRANSITION
    assert advance_step(s1.id, "approved").error == ProgressionError.INVALID_TRANSITION


def test_blocked_step_can_return_to_work():
    instance_id = _start(_linear(2))
    _, (s1, _s2) = _state(instance_id)

    assert advance_step(s1.id, "blocked").ok
    assert advance_step(s1.id, "completed").error == ProgressionError.INVALID_TRANSITION
    assert advance_step(s1.id, "in_progress").ok
    assert advance_step(s1.id, "completed").ok


def test_unknown_step_or_other_org_is_not_found():
    instance_id = _start(_linear(1))
    _, (s1,) = _state(instance_id)

    assert advance_step("no-such-step", "completed").error == ProgressionError.NOT_FOUND
    assert advance_step(s1.id, "completed", org_id=2).error == ProgressionError.NOT_FOUND

    _, (s1,) = _state(instance_id)
    assert s1.status == "in_progress"


def test_hold_blocks_progress_until_resumed():
    instance_id = _start(_linear(2))
    _, (s1, _s2) = _state(instance_id)

    held = hold_instance(instance_id, "manager-1", "Waiting on paperwork", now=T0)
    assert held.ok
    assert held.instance.status == "on_hold"

    assert advance_step(s1.id, "completed").error == ProgressionError.INVALID_TRANSITION

    resumed = resume_instance(instance_id, "manager-1")
    assert resumed.ok
    assert advance_step(s1.id, "completed").ok

    instance, _ = _state(instance_id)
    history = instance.instance_metadata["status_history"]
    assert [(entry["from"], entry["to"]) for entry in history] == [
        ("in_progress", "on_hold"),
        ("on_hold", "in_progress"),
    ]
    assert history[0]["reason"] == "Waiting on paperwork"


def test_cancelled_instance_is_terminal():
    instance_id = _start(_linear(2))
    _, (s1, _s2) = _state(instance_id)

    assert cancel_instance(instance_id, "manager-1").ok
    assert advance_step(s1.id, "completed").error == ProgressionError.INVALID_TRANSITION
    assert cancel_instance(instance_id, "manager-1").error == ProgressionError.INVALID_TRANSITION
    assert resume_instance(instance_id, "manager-1").error == ProgressionError.INVALID_TRANSITION
    assert cancel_instance("no-such-instance").error == ProgressionError.NOT_FOUND

    instance, (s1, _s2) = _state(instance_id)
    assert instance.status == "cancelled"
    assert s1.status == "in_progress"


def test_assign_step_sets_person_on_open_steps_only():
    db = SessionLocal()
    try:
        person = Person(org_id=1, name="Helper")
        outsider = Person(org_id=2, name="Outsider")
        db.add_all([person, outsider])
        db.commit()
        person_id, outsider_id = person.id, outsider.id
    finally:
        db.close()

    instance_id = _start(_linear(2))
    _, (s1, s2) = _state(instance_id)

    result = assign_step(s2.id, person_id=person_id, actor_id="manager-1")
    assert result.ok
    assert result.step.assigned_person_id == person_id

    assert assign_step(s2.id, person_id=outsider_id).error == ProgressionError.NOT_FOUND

    advance_step(s1.id, "completed")
    assert assign_step(s1.id, user_id="someone").error == ProgressionError.INVALID_TRANSITION


def test_graph_progression_follows_edge_conditions():
    steps = [
        {"id": "review", "name": "Review", "order_index": 0},
        {"id": "reject", "name": "Rejected path", "order_index": 1},
        {"id": "approve", "name": "Approved path", "order_index": 2},
    ]
    edges = [
        {"source_step_id": "review", "target_step_id": "approve", "condition_type": "if_approved"},
        {"source_step_id": "review", "target_step_id": "reject", "condition_type": "if_rejected"},
    ]

    approved_id = _start(steps, edges, settings={"progression": "graph"})
    _, (review, reject, approve) = _state(approved_id)
    result = advance_step(review.id, "completed")
    assert result.promoted_step.id == approve.id

    rejected_id = _start(steps, edges, settings={"progression": "graph"})
    _, (review, reject, approve) = _state(rejected_id)
    result = advance_step(review.id, "skipped")
    assert result.promoted_step.id == reject.id


def test_linear_progression_ignores_edges_by_default():
    steps = [
        {"id": "a", "name": "A", "order_index": 0},
        {"id": "b", "name": "B", "order_index": 1},
        {"id": "c", "name": "C", "order_index": 2},
    ]
    edges = [{"source_step_id": "a", "target_step_id": "c"}]

    instance_id = _start(steps, edges)
    _, (a, b, c) = _state(instance_id)
    assert advance_step(a.id, "completed").promoted_step.id == b.id


@pytest.mark.skipif(
    make_url(os.environ["DATABASE_URL"]).drivername.startswith("sqlite"),
    reason="row locks need PostgreSQL",
)
def test_concurrent_completions_of_last_steps_complete_instance_once():
    instance_id = _start(_linear(3))
    _, (s1, _, _) = _state(instance_id)
    assert advance_step(s1.id, "completed", "user-1", now=T0 + timedelta(hours=1)).ok

    _, (_, s2, s3) = _state(instance_id)

    # Two actors, separate DB sessions, finish the remaining steps at the same time
    barrier = threading.Barrier(2)
    results = []
    lock = threading.Lock()

    def worker(step_id, actor_id):
        db = SessionLocal()
        try:
            barrier.wait()
            result = advance_step(step_id, "completed", actor_id, db=db, now=T0 + timedelta(hours=2))
            db.commit()
            with lock:
                results.append((result.ok, result.instance.status))
        finally:
            db.close()

    t1 = threading.Thread(target=worker, args=(s2.id, "user-2"))
    t2 = threading.Thread(target=worker, args=(s3.id, "user-3"))
    t1.start()
    t2.start()
    t1.join()
    t2.join()

    assert [ok for ok, _ in results] == [True, True]
    # Only the second writer under the instance lock sees the last completion
    assert sorted(status for _, status in results) == ["completed", "in_progress"]

    instance, steps = _state(instance_id)
    assert instance.status == "completed"
    assert instance.completed_steps == instance.total_steps == 3
    assert all(step.status == "completed" for step in steps)
    _assert_counter_matches_steps(instance_id)
