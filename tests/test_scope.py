"""Tests for scope list decoding and the location/tenure gates."""

from datetime import date

import pytest

from approval_engine.models import LineItem
from approval_engine.services.errors import NotFoundError
from approval_engine.services.scope import (
    ScopeValidator,
    canonical_tenure_bucket,
    check_location_scope,
    check_tenure_scope,
    is_unrestricted,
    months_between,
    parse_scope_list,
    tenure_bucket,
)

from .conftest import create_budget, line_item, years_ago

AS_OF = date(2025, 6, 15)


def item(employee_id: str, location: str | None = "Manila", hire_date: date | None = None) -> LineItem:
    return LineItem(
        employee_id=employee_id,
        item_number=1,
        location=location,
        hire_date=hire_date,
        amount=100,
    )


class TestParseScopeList:
    """All three stored encodings decode to the same tokens."""

    @pytest.mark.parametrize(
        "raw",
        [
            '["Manila", "Cebu"]',
            "Manila, Cebu",
            ["Manila", "  CEBU "],
            '"Manila,Cebu"',
        ],
    )
    def test_encodings_agree(self, raw):
        assert parse_scope_list(raw) == ["manila", "cebu"]

    def test_bare_scalar(self):
        assert parse_scope_list("Davao City") == ["davao city"]

    def test_empty_values(self):
        assert parse_scope_list(None) == []
        assert parse_scope_list("") == []
        assert parse_scope_list("[]") == []
        assert parse_scope_list([]) == []

    def test_whitespace_collapsed_and_deduplicated(self):
        assert parse_scope_list("New   York, new york,Boston") == ["new york", "boston"]

    def test_malformed_json_falls_back_to_commas(self):
        assert parse_scope_list('["Manila", Cebu') == ["manila", "cebu"]

    def test_unrestricted(self):
        assert is_unrestricted([]) is True
        assert is_unrestricted(parse_scope_list('["ALL"]')) is True
        assert is_unrestricted(["manila"]) is False


class TestTenureBuckets:
    @pytest.mark.parametrize(
        "label,bucket",
        [
            ("0-6months", "0-6months"),
            ("0 - 6 Months", "0-6months"),
            ("0 to 6 months", "0-6months"),
            ("6-12 months", "6-12months"),
            ("1-2 years", "1-2years"),
            ("1_2_yrs", "1-2years"),
            ("2-5years", "2-5years"),
            ("5+ years", "5plus-years"),
            ("5plus-years", "5plus-years"),
            ("5 years+", "5plus-years"),
        ],
    )
    def test_canonicalizer(self, label, bucket):
        assert canonical_tenure_bucket(label) == bucket

    def test_unknown_label(self):
        assert canonical_tenure_bucket("forever") is None
        assert canonical_tenure_bucket(None) is None

    def test_calendar_months(self):
        assert months_between(date(2025, 1, 31), date(2025, 2, 28)) == 0
        assert months_between(date(2025, 1, 15), date(2025, 2, 15)) == 1
        assert months_between(date(2020, 6, 15), date(2025, 6, 15)) == 60

    @pytest.mark.parametrize(
        "hire_date,bucket",
        [
            (date(2025, 3, 1), "0-6months"),
            (date(2024, 12, 15), "6-12months"),
            (date(2024, 6, 15), "1-2years"),
            (date(2022, 6, 15), "2-5years"),
            (date(2020, 6, 15), "5plus-years"),
            (date(2026, 1, 1), None),
            (None, None),
        ],
    )
    def test_bucket_from_hire_date(self, hire_date, bucket):
        assert tenure_bucket(hire_date, AS_OF) == bucket


class TestLocationGate:
    def test_unrestricted_scope_passes(self):
        verdict = check_location_scope('["all"]', [item("E1", location="Nowhere")])
        assert verdict.valid is True

    def test_case_and_space_normalized(self):
        verdict = check_location_scope("Quezon City", [item("E1", location="  quezon   CITY ")])
        assert verdict.valid is True

    def test_violation_lists_offenders(self):
        verdict = check_location_scope('["Manila"]', [item("E1", location="Cebu"), item("E2", location=None)])

        assert verdict.valid is False
        assert "E1 (cebu)" in verdict.reason
        assert "E2 (missing/invalid)" in verdict.reason

    def test_violation_list_is_truncated(self):
        items = [item(f"E{i}", location="Cebu") for i in range(7)]
        verdict = check_location_scope("Manila", items)

        assert verdict.valid is False
        assert "7 line item(s)" in verdict.reason
        assert "E4 (cebu)" in verdict.reason
        assert "E5" not in verdict.reason
        assert verdict.reason.endswith(", ...")


class TestTenureGate:
    def test_bucket_in_scope(self):
        verdict = check_tenure_scope('["2-5 years"]', [item("E1", hire_date=date(2022, 1, 1))], AS_OF)
        assert verdict.valid is True

    def test_bucket_out_of_scope(self):
        verdict = check_tenure_scope('["0-6months"]', [item("E1", hire_date=date(2022, 1, 1))], AS_OF)

        assert verdict.valid is False
        assert "E1 (2-5years)" in verdict.reason

    def test_missing_hire_date_always_fails_restricted_scope(self):
        verdict = check_tenure_scope("0-6months, 5+ years", [item("E1", hire_date=None)], AS_OF)

        assert verdict.valid is False
        assert "E1 (missing/invalid)" in verdict.reason

    def test_missing_hire_date_passes_unrestricted_scope(self):
        assert check_tenure_scope(None, [item("E1", hire_date=None)], AS_OF).valid is True


class TestScopeValidator:
    async def test_validator_is_idempotent(self, session, directory, make_request):
        budget = await create_budget(session, location='["Manila"]', tenure_group='["1-2years"]')
        request = await make_request(
            items=[line_item("EMP-1", 100, location="Cebu", hire_date=years_ago(3))],
            budget_id=budget.budget_id,
        )
        validator = ScopeValidator(session)

        first = await validator.validate_location_scope(request.request_id)
        second = await validator.validate_location_scope(request.request_id)
        assert first == second
        assert first.valid is False

        tenure_first = await validator.validate_tenure_scope(request.request_id)
        tenure_second = await validator.validate_tenure_scope(request.request_id)
        assert tenure_first == tenure_second
        assert "EMP-1 (2-5years)" in tenure_first.reason

    async def test_unknown_request(self, session):
        with pytest.raises(NotFoundError):
            await ScopeValidator(session).validate_location_scope("missing")
