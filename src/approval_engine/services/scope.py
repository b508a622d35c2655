"""Scope validation for location and tenure constraints.

Budget scope fields arrive in three encodings: a JSON array, a bare
scalar, or a comma-separated string. ``parse_scope_list`` is the single
decoder for all of them; every caller goes through it.

Tenure is never read from a stored field. It is derived from the line
item's hire date at validation time and bucketed into one of:

    0-6months, 6-12months, 1-2years, 2-5years, 5plus-years
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from approval_engine.models import ApprovalRequest, BudgetConfig, LineItem
from approval_engine.services.errors import NotFoundError

logger = logging.getLogger(__name__)

UNRESTRICTED_TOKEN = "all"
MAX_LISTED_VIOLATIONS = 5
MISSING_LABEL = "missing/invalid"

TENURE_BUCKETS = ("0-6months", "6-12months", "1-2years", "2-5years", "5plus-years")

# Keys are tokens with every separator removed and "+" spelled "plus".
_TENURE_SYNONYMS: dict[str, str] = {
    "06months": "0-6months",
    "06month": "0-6months",
    "06mos": "0-6months",
    "06m": "0-6months",
    "lessthan6months": "0-6months",
    "under6months": "0-6months",
    "612months": "6-12months",
    "612month": "6-12months",
    "612mos": "6-12months",
    "612m": "6-12months",
    "6months1year": "6-12months",
    "12years": "1-2years",
    "12year": "1-2years",
    "12yrs": "1-2years",
    "12y": "1-2years",
    "1224months": "1-2years",
    "25years": "2-5years",
    "25year": "2-5years",
    "25yrs": "2-5years",
    "25y": "2-5years",
    "2460months": "2-5years",
    "5plusyears": "5plus-years",
    "5plusyear": "5plus-years",
    "5plusyrs": "5plus-years",
    "5plusy": "5plus-years",
    "5plus": "5plus-years",
    "5yearsplus": "5plus-years",
    "5yrsplus": "5plus-years",
    "over5years": "5plus-years",
    "morethan5years": "5plus-years",
    "60plusmonths": "5plus-years",
}

_WHITESPACE = re.compile(r"\s+")
_SEPARATORS = re.compile(r"[\s_\-–—/]+")


@dataclass(frozen=True)
class ScopeVerdict:
    """Outcome of a scope gate."""

    valid: bool
    reason: str | None = None


def normalize_token(value: Any) -> str:
    """Lowercase and collapse whitespace."""
    return _WHITESPACE.sub(" ", str(value)).strip().lower()


def parse_scope_list(raw: Any) -> list[str]:
    """Decode a scope field into normalized, de-duplicated tokens.

    Accepts None, a list/tuple, a JSON array string, a JSON scalar string,
    a bare scalar, or a comma-separated string.
    """
    if raw is None:
        return []

    values: Iterable[Any]
    if isinstance(raw, (list, tuple, set)):
        values = raw
    elif isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        decoded: Any = None
        if text[0] in '["':
            try:
                decoded = json.loads(text)
            except ValueError:
                decoded = None
        if isinstance(decoded, list):
            values = decoded
        elif isinstance(decoded, str):
            values = decoded.split(",")
        else:
            values = text.strip("[]").split(",")
    else:
        values = [raw]

    tokens: list[str] = []
    for value in values:
        if value is None:
            continue
        token = normalize_token(value).strip("\"'").strip()
        if token and token not in tokens:
            tokens.append(token)
    return tokens


def is_unrestricted(tokens: Sequence[str]) -> bool:
    """Empty scope or an explicit ``all`` means no restriction."""
    return not tokens or UNRESTRICTED_TOKEN in tokens


def canonical_tenure_bucket(token: Any) -> str | None:
    """Map a tenure label onto its canonical bucket name.

    Tolerates separators, plus signs and common synonyms
    (e.g. ``"5+ years"``, ``"1 - 2 yrs"``, ``"0 to 6 months"``).
    """
    if token is None:
        return None
    compact = normalize_token(token).replace("+", "plus")
    compact = _SEPARATORS.sub("", compact)
    compact = compact.replace("to", "")
    if not compact:
        return None
    return _TENURE_SYNONYMS.get(compact)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from start to end."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return months


def tenure_bucket(hire_date: date | None, as_of: date) -> str | None:
    """Derive the tenure bucket for a hire date, or None if unusable."""
    if hire_date is None:
        return None
    months = months_between(hire_date, as_of)
    if months < 0:
        return None
    if months < 6:
        return "0-6months"
    if months < 12:
        return "6-12months"
    if months < 24:
        return "1-2years"
    if months < 60:
        return "2-5years"
    return "5plus-years"


def _employee_label(item: LineItem) -> str:
    return str(item.employee_id or item.employee_name or f"item {item.item_number}")


def _format_violations(kind: str, allowed: Sequence[str], offenders: list[tuple[str, str]]) -> str:
    listed = ", ".join(f"{who} ({value})" for who, value in offenders[:MAX_LISTED_VIOLATIONS])
    if len(offenders) > MAX_LISTED_VIOLATIONS:
        listed += ", ..."
    return (
        f"{len(offenders)} line item(s) fall outside the budget {kind} scope "
        f"[{', '.join(allowed)}]: {listed}"
    )


def check_location_scope(raw_scope: Any, items: Sequence[LineItem]) -> ScopeVerdict:
    """Every item's location must be in the allowed set."""
    allowed = parse_scope_list(raw_scope)
    if is_unrestricted(allowed):
        return ScopeVerdict(valid=True)

    offenders: list[tuple[str, str]] = []
    for item in items:
        location = normalize_token(item.location) if item.location else ""
        if location not in allowed:
            offenders.append((_employee_label(item), location or MISSING_LABEL))

    if offenders:
        return ScopeVerdict(valid=False, reason=_format_violations("location", allowed, offenders))
    return ScopeVerdict(valid=True)


def check_tenure_scope(raw_scope: Any, items: Sequence[LineItem], as_of: date) -> ScopeVerdict:
    """Every item's derived tenure bucket must be in the allowed set."""
    tokens = parse_scope_list(raw_scope)
    if is_unrestricted(tokens):
        return ScopeVerdict(valid=True)

    allowed = [canonical_tenure_bucket(t) or t for t in tokens]

    offenders: list[tuple[str, str]] = []
    for item in items:
        bucket = tenure_bucket(item.hire_date, as_of)
        if bucket is None or bucket not in allowed:
            offenders.append((_employee_label(item), bucket or MISSING_LABEL))

    if offenders:
        return ScopeVerdict(valid=False, reason=_format_violations("tenure", allowed, offenders))
    return ScopeVerdict(valid=True)


class ScopeValidator:
    """Location and tenure gates run before a request is submitted."""

    def __init__(self, session: AsyncSession, as_of: date | None = None):
        self.session = session
        self._as_of = as_of

    @property
    def as_of(self) -> date:
        return self._as_of or date.today()

    async def validate_location_scope(self, request_id: str) -> ScopeVerdict:
        budget, items = await self._load(request_id)
        verdict = check_location_scope(budget.location, items)
        if not verdict.valid:
            logger.info("Location scope failed for request %s: %s", request_id, verdict.reason)
        return verdict

    async def validate_tenure_scope(self, request_id: str) -> ScopeVerdict:
        budget, items = await self._load(request_id)
        verdict = check_tenure_scope(budget.tenure_group, items, self.as_of)
        if not verdict.valid:
            logger.info("Tenure scope failed for request %s: %s", request_id, verdict.reason)
        return verdict

    async def _load(self, request_id: str) -> tuple[BudgetConfig, list[LineItem]]:
        request = await self.session.get(ApprovalRequest, request_id)
        if request is None:
            raise NotFoundError("Approval request", request_id)
        budget = await self.session.get(BudgetConfig, request.budget_id)
        if budget is None:
            raise NotFoundError("Budget configuration", request.budget_id)

        result = await self.session.execute(
            select(LineItem)
            .where(LineItem.request_id == request_id)
            .order_by(LineItem.item_number)
        )
        return budget, list(result.scalars().all())
