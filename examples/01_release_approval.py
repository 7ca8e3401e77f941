#!/usr/bin/env python3
"""Example: Release Approval

Walks a release through the built-in four-level chain, shows progress
after each vote, and escalates a stalled PRD with a timeout scan.

Usage:
    python examples/01_release_approval.py

Requirements:
    pip install aumos-approval-chains
"""
from __future__ import annotations

from datetime import timedelta

import aumos_approval_chains as chains
from aumos_approval_chains import ApprovalChainEngine, ResourceType


def main() -> None:
    print(f"aumos-approval-chains version: {chains.__version__}")

    with ApprovalChainEngine() as engine:
        # Step 1: Open a release request against the built-in chain
        request = engine.create_request(
            "release-approval",
            ResourceType.RELEASE,
            "v3.2.0",
            requested_by="release-bot",
            resource_name="Spring release",
        )
        print(f"Opened {request.id} at level {request.current_level} (deadline {request.deadline})")

        # Step 2: Each approver checks their authority, then votes
        votes = [("qa-lead", "editor"), ("tech-lead", "editor"), ("pm", "admin"), ("director", "admin")]
        for user_id, role in votes:
            if not engine.can_user_approve(request.id, user_id, role):
                print(f"  {user_id} may not approve at level {request.current_level}")
                continue
            request = engine.approve(request.id, user_id, comment="Looks good")
            progress = engine.get_approval_progress(request.id)
            print(
                f"  {user_id:<10} -> status={request.status.value:<9} "
                f"level={progress.current_level}/{progress.total_levels} "
                f"({progress.percent_complete}%)"
            )

        # Step 3: A PRD nobody looks at times out and escalates to the PM level
        prd = engine.create_request("prd-approval", ResourceType.PRD, "prd-88", requested_by="alice")
        later = prd.created_at + timedelta(hours=49)
        for escalated in engine.check_timeouts(now=later):
            record = escalated.escalation_history[-1]
            print(
                f"Escalated {escalated.id}: level {record.from_level} -> {record.to_level} "
                f"({record.reason})"
            )

        # Step 4: The PM inbox is sorted by deadline
        for pending in engine.get_pending_approvals("pm", "admin"):
            print(f"PM pending: {pending.resource_type}/{pending.resource_id} due {pending.deadline}")


if __name__ == "__main__":
    main()
