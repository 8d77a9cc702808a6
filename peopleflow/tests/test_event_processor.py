from datetime import datetime, timezone

from peopleflow.database import SessionLocal
from peopleflow.models.people_settings import PeopleSettings
from peopleflow.models.workflow_instance import WorkflowInstance
from peopleflow.services import event_processor, template_store
from peopleflow.services.event_processor import (
    PERSON_OFFBOARDING,
    PERSON_ONBOARDING,
    TriggerConfig,
    TriggerRule,
    WorkflowEvent,
    WorkflowEventType,
)
from peopleflow.services.step_progression import cancel_instance

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _template(org_id=1, **fields):
    fields.setdefault("name", "Onboarding")
    fields.setdefault("status", "active")
    db = SessionLocal()
    try:
        template = template_store.create_template(
            db, org_id, "admin-1", fields, [{"id": "s1", "name": "Paperwork"}], []
        )
        db.commit()
        return template.id
    finally:
        db.close()


def _config(onboarding_id=None, offboarding_id=None, enabled=True):
    return TriggerConfig(
        rules={
            PERSON_ONBOARDING: TriggerRule(enabled=enabled, template_id=onboarding_id),
            PERSON_OFFBOARDING: TriggerRule(enabled=enabled, template_id=offboarding_id),
        }
    )


def _status_changed(previous, new, entity_id="42", org_id=1):
    return WorkflowEvent(
        type=WorkflowEventType.PERSON_STATUS_CHANGED,
        entity_id=entity_id,
        entity_name="Ada Lovelace",
        previous_status=previous,
        new_status=new,
        org_id=org_id,
        triggered_by_user_id="hr-1",
    )


def _instances():
    db = SessionLocal()
    try:
        return db.query(WorkflowInstance).all()
    finally:
        db.close()


def test_unchanged_status_triggers_nothing():
    template_id = _template()

    result = event_processor.handle(_status_changed("onboarding", "onboarding"), _config(template_id))

    assert result.triggered == []
    assert result.errors == []
    assert _instances() == []


def test_onboarding_status_starts_configured_workflow():
    template_id = _template()

    result = event_processor.handle(_status_changed("active", "onboarding"), _config(template_id), now=T0)

    assert result.success
    assert len(result.triggered) == 1
    assert result.triggered[0].template_id == template_id
    assert result.triggered[0].trigger_type == PERSON_ONBOARDING

    (instance,) = _instances()
    assert instance.id == result.triggered[0].instance_id
    assert instance.entity_type == "person"
    assert instance.entity_id == "42"
    assert instance.name == "Onboarding - Ada Lovelace"
    assert instance.trigger_type == PERSON_ONBOARDING
    assert instance.started_by_id == "hr-1"
    assert instance.instance_metadata["event_type"] == "person.status_changed"


def test_offboarding_uses_its_own_template():
    onboarding_id = _template(name="Onboarding")
    offboarding_id = _template(name="Offboarding")

    result = event_processor.handle(
        _status_changed("active", "offboarding"), _config(onboarding_id, offboarding_id)
    )

    assert [t.template_id for t in result.triggered] == [offboarding_id]


def test_person_created_in_onboarding_status_triggers():
    template_id = _template()
    event = {
        "type": "person.created",
        "entity_id": 7,
        "entity_name": "Grace",
        "new_status": "onboarding",
        "org_id": 1,
    }

    result = event_processor.handle(event, _config(template_id))

    assert len(result.triggered) == 1
    assert _instances()[0].entity_id == "7"


def test_disabled_or_missing_configuration_is_a_message_not_an_error():
    template_id = _template()

    disabled = event_processor.handle(_status_changed("active", "onboarding"), _config(template_id, enabled=False))
    no_template = event_processor.handle(_status_changed("active", "onboarding"), _config(None))
    no_settings = event_processor.handle(_status_changed("active", "onboarding"), None)

    for result in (disabled, no_template, no_settings):
        assert result.triggered == []
        assert result.errors == []
        assert len(result.messages) == 1

    assert "not enabled" in disabled.messages[0]
    assert _instances() == []


def test_ineligible_template_is_reported_as_message():
    template_id = _template(status="archived")

    result = event_processor.handle(_status_changed("active", "onboarding"), _config(template_id))

    assert result.triggered == []
    assert result.errors == []
    assert "not eligible" in result.messages[0]


def test_repeated_event_does_not_start_a_second_open_instance():
    template_id = _template()
    config = _config(template_id)

    first = event_processor.handle(_status_changed("active", "onboarding"), config)
    second = event_processor.handle(_status_changed("active", "onboarding"), config)

    assert len(first.triggered) == 1
    assert second.triggered == []
    assert second.errors == []
    assert "already exists" in second.messages[0]
    assert len(_instances()) == 1

    cancel_instance(first.triggered[0].instance_id, "hr-1")
    third = event_processor.handle(_status_changed("active", "onboarding"), config)
    assert len(third.triggered) == 1
    assert len(_instances()) == 2


def test_other_entities_are_not_deduplicated():
    template_id = _template()
    config = _config(template_id)

    event_processor.handle(_status_changed("active", "onboarding", entity_id="1"), config)
    event_processor.handle(_status_changed("active", "onboarding", entity_id="2"), config)

    assert sorted(i.entity_id for i in _instances()) == ["1", "2"]


def test_unhandled_and_invalid_events_never_raise():
    asset = event_processor.handle(
        {"type": "asset.assigned", "entity_id": "a-1", "org_id": 1}, _config()
    )
    assert asset.triggered == [] and asset.errors == []

    invalid = event_processor.handle({"type": "person.exploded", "entity_id": "1", "org_id": 1}, _config())
    assert invalid.triggered == []
    assert len(invalid.errors) == 1


def test_handler_failure_is_captured_in_errors():
    def boom(event, config, result, db, now):
        raise RuntimeError("database went away")

    result = event_processor.handle(
        _status_changed("active", "onboarding"),
        _config(),
        handlers={WorkflowEventType.PERSON_STATUS_CHANGED: boom},
    )

    assert result.triggered == []
    assert result.errors == ["database went away"]


def test_load_trigger_config_reads_people_settings():
    template_id = _template()

    db = SessionLocal()
    try:
        assert event_processor.load_trigger_config(db, 1) is None

        db.add(
            PeopleSettings(
                org_id=1,
                auto_onboarding_workflow=True,
                default_onboarding_template_id=template_id,
                auto_offboarding_workflow=False,
            )
        )
        db.commit()

        config = event_processor.load_trigger_config(db, 1)
    finally:
        db.close()

    assert config.rule_for(PERSON_ONBOARDING) == TriggerRule(enabled=True, template_id=template_id)
    assert config.rule_for(PERSON_OFFBOARDING) == TriggerRule(enabled=False, template_id=None)
