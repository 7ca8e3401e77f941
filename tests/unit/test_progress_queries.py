"""Tests for progress reporting, authorisation checks and request queries."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from aumos_approval_chains.engine import ApprovalChainEngine
from aumos_approval_chains.progress import deadline_sort_key, is_overdue
from aumos_approval_chains.requests.models import ApprovalRequest, RequestStatus, ResourceType

START = datetime(2026, 5, 4, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def engine(clock: FakeClock) -> ApprovalChainEngine:
    eng = ApprovalChainEngine(clock=clock)
    yield eng
    eng.close()


def _three_level(engine: ApprovalChainEngine) -> str:
    return engine.create_chain(
        {
            "name": "Three",
            "levels": [
                {"order": 1, "name": "Lead", "approver_roles": ["lead"]},
                {"order": 2, "name": "Committee", "approver_roles": ["member"], "required_approvals": 2},
                {"order": 3, "name": "Director", "approver_user_ids": ["dana"]},
            ],
        }
    ).id


# ---------------------------------------------------------------------------
# get_approval_progress
# ---------------------------------------------------------------------------


class TestApprovalProgress:
    def test_fresh_request(self, engine: ApprovalChainEngine) -> None:
        chain_id = _three_level(engine)
        request = engine.create_request(chain_id, "ticket", "T-1", "alice")
        progress = engine.get_approval_progress(request.id)
        assert progress.current_level == 1
        assert progress.total_levels == 3
        assert progress.current_level_name == "Lead"
        assert progress.approvals_at_current_level == 0
        assert progress.required_approvals == 1
        assert progress.percent_complete == 0

    def test_half_way_through_quorum_level(self, engine: ApprovalChainEngine) -> None:
        chain_id = _three_level(engine)
        request = engine.create_request(chain_id, "ticket", "T-1", "alice")
        engine.approve(request.id, "lead")
        engine.approve(request.id, "member-1")
        progress = engine.get_approval_progress(request.id)
        assert progress.current_level == 2
        assert progress.approvals_at_current_level == 1
        assert progress.required_approvals == 2
        assert progress.percent_complete == 50

    def test_approved_request_is_complete(self, engine: ApprovalChainEngine) -> None:
        request = engine.create_request("ticket-approval", "ticket", "T-1", "alice")
        engine.approve(request.id, "bob")
        assert engine.get_approval_progress(request.id).percent_complete == 100

    def test_rounds_half_up(self, engine: ApprovalChainEngine) -> None:
        chain = engine.create_chain(
            {
                "name": "Eight",
                "levels": [{"order": 1, "name": "Board", "required_approvals": 8}],
            }
        )
        request = engine.create_request(chain.id, "ticket", "T-1", "alice")
        engine.approve(request.id, "m1")
        # 1/8 == 12.5%
        assert engine.get_approval_progress(request.id).percent_complete == 13

    def test_unknown_request(self, engine: ApprovalChainEngine) -> None:
        assert engine.get_approval_progress("missing") is None

    def test_to_dict(self, engine: ApprovalChainEngine) -> None:
        request = engine.create_request("prd-approval", "prd", "p", "alice")
        data = engine.get_approval_progress(request.id).to_dict()
        assert data["current_level_name"] == "Tech Lead"
        assert data["percent_complete"] == 0


# ---------------------------------------------------------------------------
# can_user_approve / get_pending_approvals
# ---------------------------------------------------------------------------


class TestCanUserApprove:
    def test_role_match(self, engine: ApprovalChainEngine) -> None:
        request = engine.create_request("prd-approval", "prd", "p", "alice")
        assert engine.can_user_approve(request.id, "bob", "editor")
        assert not engine.can_user_approve(request.id, "bob", "viewer")
        assert not engine.can_user_approve(request.id, "bob")

    def test_user_id_match(self, engine: ApprovalChainEngine) -> None:
        chain_id = _three_level(engine)
        request = engine.create_request(chain_id, "ticket", "T-1", "alice")
        engine.approve(request.id, "lead")
        engine.approve(request.id, "m1")
        engine.approve(request.id, "m2")
        assert engine.can_user_approve(request.id, "dana")
        assert not engine.can_user_approve(request.id, "erin", "member")

    def test_already_voted(self, engine: ApprovalChainEngine) -> None:
        chain_id = _three_level(engine)
        request = engine.create_request(chain_id, "ticket", "T-1", "alice")
        engine.approve(request.id, "lead")
        engine.approve(request.id, "m1")
        assert not engine.can_user_approve(request.id, "m1", "member")
        assert engine.can_user_approve(request.id, "m2", "member")

    def test_terminal_request(self, engine: ApprovalChainEngine) -> None:
        request = engine.create_request("ticket-approval", "ticket", "T-1", "alice")
        engine.cancel(request.id)
        assert not engine.can_user_approve(request.id, "bob", "admin")

    def test_unknown_request(self, engine: ApprovalChainEngine) -> None:
        assert not engine.can_user_approve("missing", "bob", "admin")


class TestPendingApprovals:
    def test_filters_by_authority(self, engine: ApprovalChainEngine) -> None:
        prd = engine.create_request("prd-approval", "prd", "p", "alice")
        ticket = engine.create_request("ticket-approval", "ticket", "t", "alice")
        release = engine.create_request("release-approval", "release", "r", "alice")

        editor_ids = {r.id for r in engine.get_pending_approvals("bob", "editor")}
        assert editor_ids == {prd.id, ticket.id, release.id}

        # Release level 1 (QA Lead) only accepts editors.
        admin_ids = {r.id for r in engine.get_pending_approvals("carol", "admin")}
        assert admin_ids == {prd.id, ticket.id}

    def test_excludes_requests_already_voted_on(self, engine: ApprovalChainEngine) -> None:
        chain = engine.create_chain(
            {"name": "Pair", "levels": [{"order": 1, "name": "Devs", "approver_roles": ["dev"], "required_approvals": 2}]}
        )
        request = engine.create_request(chain.id, "ticket", "T-1", "alice")
        engine.approve(request.id, "bob")
        assert engine.get_pending_approvals("bob", "dev") == []
        assert [r.id for r in engine.get_pending_approvals("carol", "dev")] == [request.id]

    def test_includes_escalated_excludes_terminal(self, engine: ApprovalChainEngine) -> None:
        escalated = engine.create_request("ticket-approval", "ticket", "t1", "alice")
        engine.escalate(escalated.id, "slow")
        done = engine.create_request("ticket-approval", "ticket", "t2", "alice")
        engine.approve(done.id, "bob")
        ids = [r.id for r in engine.get_pending_approvals("carol", "admin")]
        assert ids == [escalated.id]

    def test_sorted_by_deadline_then_newest(self, engine: ApprovalChainEngine, clock: FakeClock) -> None:
        undated_chain = engine.create_chain(
            {"name": "Undated", "levels": [{"order": 1, "name": "Any", "approver_roles": ["admin"]}]}
        )
        old_undated = engine.create_request(undated_chain.id, "ticket", "u1", "alice")
        clock.advance(hours=1)
        prd = engine.create_request("prd-approval", "prd", "p", "alice")  # deadline +48h
        clock.advance(hours=1)
        ticket = engine.create_request("ticket-approval", "ticket", "t", "alice")  # deadline +24h
        clock.advance(hours=1)
        new_undated = engine.create_request(undated_chain.id, "ticket", "u2", "alice")

        ordered = [r.id for r in engine.get_pending_approvals("carol", "admin")]
        assert ordered == [ticket.id, prd.id, new_undated.id, old_undated.id]


# ---------------------------------------------------------------------------
# Resource queries
# ---------------------------------------------------------------------------


class TestResourceQueries:
    def test_requests_by_resource(self, engine: ApprovalChainEngine) -> None:
        first = engine.create_request("ticket-approval", ResourceType.TICKET, "T-1", "alice")
        engine.cancel(first.id)
        second = engine.create_request("ticket-approval", "ticket", "T-1", "alice")
        engine.create_request("ticket-approval", "ticket", "T-2", "alice")

        found = engine.get_requests_by_resource("ticket", "T-1")
        assert [r.id for r in found] == [first.id, second.id]
        assert engine.get_requests_by_resource(ResourceType.PRD, "T-1") == []

    def test_find_open_request(self, engine: ApprovalChainEngine) -> None:
        first = engine.create_request("ticket-approval", "ticket", "T-1", "alice")
        assert engine.find_open_request("ticket", "T-1").id == first.id
        engine.approve(first.id, "bob")
        assert engine.find_open_request(ResourceType.TICKET, "T-1") is None

    def test_get_all_requests(self, engine: ApprovalChainEngine) -> None:
        assert engine.get_all_requests() == []
        engine.create_request("ticket-approval", "ticket", "T-1", "alice")
        assert len(engine.get_all_requests()) == 1


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def _request(**overrides: object) -> ApprovalRequest:
    fields: dict[str, object] = {
        "id": "r",
        "chain_id": "c",
        "resource_type": "ticket",
        "resource_id": "T",
        "requested_by": "alice",
        "created_at": START,
    }
    fields.update(overrides)
    return ApprovalRequest(**fields)  # type: ignore[arg-type]


class TestHelpers:
    def test_is_overdue_requires_pending_and_past_deadline(self) -> None:
        deadline = START + timedelta(hours=1)
        assert is_overdue(_request(deadline=deadline), START + timedelta(hours=2))
        assert not is_overdue(_request(deadline=deadline), START)
        assert not is_overdue(_request(deadline=deadline), deadline)
        assert not is_overdue(_request(), START + timedelta(days=30))
        assert not is_overdue(
            _request(deadline=deadline, status=RequestStatus.ESCALATED), START + timedelta(hours=2)
        )

    def test_deadline_sort_key_orders_undated_last(self) -> None:
        dated = _request(id="dated", deadline=START + timedelta(days=5))
        undated = _request(id="undated")
        assert deadline_sort_key(dated) < deadline_sort_key(undated)
