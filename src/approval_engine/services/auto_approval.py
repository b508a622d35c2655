"""Self-request short-circuit for level 1."""

from __future__ import annotations

import logging

from approval_engine.services.ledger import ApprovalLedger

logger = logging.getLogger(__name__)

SELF_APPROVER_NAME = "Self"
SELF_APPROVAL_NOTES = "Auto-approved: Self-request by L1 approver"


class AutoApprovalResolver:
    """Approves level 1 when the submitter is its configured approver.

    Runs once, right after the ledger is initialized. Only level 1 is
    considered; a submitter who is the L2 or L3 approver still waits for
    those levels to be decided by hand. The request moves to in_progress,
    or straight to approved when level 1 is its only approver level.
    """

    def __init__(self, ledger: ApprovalLedger):
        self.ledger = ledger

    async def resolve(self, request_id: str, submitter_id: str) -> bool:
        """Return True if level 1 was auto-approved. Never raises."""
        try:
            snapshots = await self.ledger.get_snapshots(request_id)
            snapshot = snapshots.get(1)
            if snapshot is None or not snapshot.matches(submitter_id):
                return False

            await self.ledger.approve(
                request_id,
                1,
                actor_id=submitter_id,
                approver_name=SELF_APPROVER_NAME,
                notes=SELF_APPROVAL_NOTES,
                is_self_request=True,
            )
            await self.ledger.session.commit()
        except Exception:
            logger.exception("Auto-approval failed for request %s", request_id)
            await self.ledger.session.rollback()
            return False

        logger.info("Request %s auto-approved at L1 for %s", request_id, submitter_id)
        return True
