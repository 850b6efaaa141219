from __future__ import annotations

import uuid
from datetime import date

import pytest

from spend_fx.core.db import SessionLocal
from spend_fx.modules.fx.errors import RuleNotFoundError, RuleValidationError
from spend_fx.modules.fx.models import RuleSource, RuleStatus
from spend_fx.modules.fx.schemas import RuleCreate, RuleUpdate
from spend_fx.modules.fx.service import (
    archive_rule,
    create_rule,
    get_rule,
    list_rules,
    update_rule,
)

TENANT = uuid.uuid4()


def _payload(**overrides) -> RuleCreate:
    values = {
        "description": "Market rates",
        "source": "api",
        "currencies": ["usd", "EUR"],
        "effective_from": date(2024, 1, 1),
        "status": "active",
    }
    values.update(overrides)
    return RuleCreate(**values)


def test_create_rule_normalizes_values():
    with SessionLocal() as session:
        rule = create_rule(
            session,
            tenant_id=TENANT,
            payload=_payload(
                source="FIXED",
                currencies=["usd", "USD", " eur "],
                fixed_rates={"usd/cny": "7.10"},
            ),
            created_by="finance@example.com",
        )

        assert rule.source == RuleSource.FIXED
        assert rule.status == RuleStatus.ACTIVE
        assert rule.currencies == ["USD", "EUR"]
        assert rule.fixed_rates == {"USD/CNY": "7.10"}
        assert rule.tenant_id == TENANT
        assert rule.created_by == "finance@example.com"
        assert rule.priority == 0


def test_new_rules_default_to_draft():
    with SessionLocal() as session:
        rule = create_rule(
            session,
            tenant_id=TENANT,
            payload=RuleCreate(
                description="Later", source="manual", effective_from=date(2024, 1, 1)
            ),
        )

        assert rule.status == RuleStatus.DRAFT


def test_create_rule_reports_every_problem_at_once():
    with SessionLocal() as session:
        with pytest.raises(RuleValidationError) as exc_info:
            create_rule(
                session,
                tenant_id=TENANT,
                payload=RuleCreate(
                    source="fixed",
                    currencies=["US$"],
                    effective_from=date(2024, 2, 1),
                    effective_to=date(2024, 1, 1),
                ),
            )

    errors = exc_info.value.errors
    assert exc_info.value.code == "VALIDATION_ERROR"
    assert "description is required" in errors
    assert "effective_to must not be earlier than effective_from" in errors
    assert "invalid currency code 'US$'" in errors
    assert "fixed_rates is required when source is 'fixed'" in errors


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"source": "bank"}, "source must be one of"),
        ({"status": "live"}, "status must be one of"),
        ({"effective_from": None}, "effective_from is required"),
        ({"source": "fixed", "fixed_rates": {"USD": "7"}}, "must look like 'USD/CNY'"),
        ({"source": "fixed", "fixed_rates": {"USD/CNY": "-1"}}, "must be positive"),
        ({"fallback_rule_id": uuid.uuid4()}, "does not exist"),
    ],
)
def test_create_rule_rejects_invalid_input(overrides, message):
    with SessionLocal() as session:
        with pytest.raises(RuleValidationError) as exc_info:
            create_rule(session, tenant_id=TENANT, payload=_payload(**overrides))

    assert any(message in e for e in exc_info.value.errors)


def test_rule_cannot_fall_back_to_itself():
    with SessionLocal() as session:
        rule = create_rule(session, tenant_id=TENANT, payload=_payload())

        with pytest.raises(RuleValidationError) as exc_info:
            update_rule(
                session,
                rule_id=rule.id,
                tenant_id=TENANT,
                payload=RuleUpdate(fallback_rule_id=rule.id),
            )

    assert exc_info.value.errors == ["a rule cannot fall back to itself"]


def test_update_rule_changes_only_given_fields():
    with SessionLocal() as session:
        rule = create_rule(session, tenant_id=TENANT, payload=_payload(priority=3))
        updated = update_rule(
            session,
            rule_id=rule.id,
            tenant_id=TENANT,
            payload=RuleUpdate(description="Renamed", effective_to=date(2024, 12, 31)),
        )

        assert updated.description == "Renamed"
        assert updated.effective_to == date(2024, 12, 31)
        assert updated.priority == 3
        assert updated.currencies == ["USD", "EUR"]
        assert updated.source == RuleSource.API


def test_update_rule_validates_the_merged_rule():
    with SessionLocal() as session:
        rule = create_rule(session, tenant_id=TENANT, payload=_payload())

        with pytest.raises(RuleValidationError):
            update_rule(
                session,
                rule_id=rule.id,
                tenant_id=TENANT,
                payload=RuleUpdate(effective_to=date(2023, 12, 31)),
            )


def test_list_rules_filters_by_status_and_tenant():
    other_tenant = uuid.uuid4()
    with SessionLocal() as session:
        create_rule(session, tenant_id=TENANT, payload=_payload(description="active"))
        create_rule(session, tenant_id=TENANT, payload=_payload(description="draft", status="draft"))
        create_rule(
            session, tenant_id=None, payload=_payload(description="global", global_rule=True)
        )
        create_rule(session, tenant_id=other_tenant, payload=_payload(description="other"))

        everything = {r.description for r in list_rules(session, tenant_id=TENANT)}
        all_status = {r.description for r in list_rules(session, tenant_id=TENANT, status="all")}
        active = {r.description for r in list_rules(session, tenant_id=TENANT, status="active")}

        with pytest.raises(RuleValidationError):
            list_rules(session, tenant_id=TENANT, status="paused")

    assert everything == all_status == {"active", "draft", "global"}
    assert active == {"active", "global"}


def test_get_rule_hides_other_tenants_rules():
    with SessionLocal() as session:
        rule = create_rule(session, tenant_id=uuid.uuid4(), payload=_payload())
        rule_id = rule.id

        with pytest.raises(RuleNotFoundError) as exc_info:
            get_rule(session, rule_id=rule_id, tenant_id=TENANT)

    assert exc_info.value.code == "RULE_NOT_FOUND"
    assert exc_info.value.rule_id == rule_id


def test_global_rules_are_visible_to_every_tenant():
    with SessionLocal() as session:
        rule = create_rule(session, tenant_id=TENANT, payload=_payload(global_rule=True))

        assert rule.tenant_id is None
        assert get_rule(session, rule_id=rule.id, tenant_id=uuid.uuid4()).id == rule.id


def test_archive_rule_is_idempotent():
    with SessionLocal() as session:
        rule = create_rule(session, tenant_id=TENANT, payload=_payload())

        archived = archive_rule(session, rule_id=rule.id, tenant_id=TENANT)
        again = archive_rule(session, rule_id=rule.id, tenant_id=TENANT)

        assert archived.status == RuleStatus.ARCHIVED
        assert again.status == RuleStatus.ARCHIVED
        assert list_rules(session, tenant_id=TENANT, status="active") == []


def test_fallback_to_another_tenants_rule_reads_as_missing():
    with SessionLocal() as session:
        foreign = create_rule(session, tenant_id=uuid.uuid4(), payload=_payload())
        shared = create_rule(session, tenant_id=TENANT, payload=_payload(global_rule=True))
        foreign_id = foreign.id

        with pytest.raises(RuleValidationError) as exc_info:
            create_rule(session, tenant_id=TENANT, payload=_payload(fallback_rule_id=foreign_id))

        assert exc_info.value.errors == [f"fallback rule {foreign_id} does not exist"]

        rule = create_rule(session, tenant_id=TENANT, payload=_payload(fallback_rule_id=shared.id))
        assert rule.fallback_rule_id == shared.id

        with pytest.raises(RuleValidationError):
            update_rule(
                session,
                rule_id=rule.id,
                tenant_id=TENANT,
                payload=RuleUpdate(fallback_rule_id=foreign_id),
            )
