"""Tests for the level 1 self-request short-circuit."""

import pytest

from approval_engine.services.auto_approval import (
    SELF_APPROVAL_NOTES,
    SELF_APPROVER_NAME,
    AutoApprovalResolver,
)
from approval_engine.services.ledger import ApprovalLedger

from .conftest import L1_APPROVER, L1_BACKUP, L2_APPROVER, L3_APPROVER, REQUESTOR


@pytest.fixture
def ledger(session) -> ApprovalLedger:
    return ApprovalLedger(session)


@pytest.fixture
def resolver(ledger) -> AutoApprovalResolver:
    return AutoApprovalResolver(ledger)


@pytest.fixture
def submitted_by(session, make_request, ledger):
    """Factory: request created and submitted by the given user."""

    async def _submit(user_id: str):
        request = await make_request(created_by=user_id)
        request.overall_status = "submitted"
        request.submitted_by = user_id
        await session.commit()
        await ledger.initialize(request.request_id)
        return request

    return _submit


class TestAutoApprovalResolver:
    async def test_fires_for_l1_primary(self, ledger, resolver, submitted_by):
        request = await submitted_by(L1_APPROVER)

        assert await resolver.resolve(request.request_id, L1_APPROVER) is True

        levels = await ledger.get_levels(request.request_id)
        assert levels[0].status == "approved"
        assert levels[0].is_self_request is True
        assert levels[0].approver_name == SELF_APPROVER_NAME
        assert levels[0].approval_notes == SELF_APPROVAL_NOTES
        assert all(r.status == "pending" for r in levels[1:])

    async def test_fires_for_l1_backup_case_insensitive(self, ledger, resolver, submitted_by):
        request = await submitted_by(L1_BACKUP)

        assert await resolver.resolve(request.request_id, L1_BACKUP.upper()) is True

    @pytest.mark.parametrize("user_id", [L2_APPROVER, L3_APPROVER, REQUESTOR])
    async def test_never_fires_for_other_users(self, ledger, resolver, submitted_by, user_id):
        request = await submitted_by(user_id)

        assert await resolver.resolve(request.request_id, user_id) is False

        levels = await ledger.get_levels(request.request_id)
        assert all(r.status == "pending" for r in levels)
        assert all(r.is_self_request is False for r in levels)

    async def test_failure_is_swallowed(self, ledger, resolver, make_request):
        # Levels exist but the request is still draft, so the ledger refuses
        request = await make_request(created_by=L1_APPROVER)
        request_id = request.request_id
        await ledger.initialize(request_id)

        assert await resolver.resolve(request_id, L1_APPROVER) is False

        levels = await ledger.get_levels(request_id)
        assert levels[0].status == "pending"

    async def test_unknown_request(self, resolver):
        assert await resolver.resolve("missing", L1_APPROVER) is False
