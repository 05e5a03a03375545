"""
Tests for the read-only workspace projections.
"""
import pytest

from partflow.db.models import RfqSupplierLineSelection
from partflow.services.line_status import upsert_status
from partflow.services.response_entry import ManualLineRequest, create_manual_line
from partflow.services.response_ledger import revise_line
from partflow.services.workspace import (
    WorkspaceStatus,
    build_workspace,
    list_line_actions,
    list_lines,
    list_responses,
    list_revision_lines,
    workspace_status,
)


def _offer(db, graph, line_number=1, price=100.0, supplier=None):
    supplier = supplier or graph.acme
    return create_manual_line(
        db,
        ManualLineRequest(
            rfq_id=graph.rfq.id, supplier_id=supplier.id, line_number=line_number, price=price, currency="USD"
        ),
    ).line


class TestWorkspaceStatus:

    @pytest.mark.parametrize("raw,archived,request_rev,latest,expected", [
        ("ARCHIVED", False, 1, 5, WorkspaceStatus.ARCHIVED),
        (None, True, None, None, WorkspaceStatus.ARCHIVED),
        (None, False, None, 5, WorkspaceStatus.NOT_SENT),
        ("REQUEST", False, 1, 5, WorkspaceStatus.RESPONDED),
        ("ACCEPTED_EXISTING", False, 1, None, WorkspaceStatus.RESPONDED),
        ("REQUEST", False, 1, None, WorkspaceStatus.WAITING_RESPONSE),
    ])
    def test_derivation(self, raw, archived, request_rev, latest, expected):
        assert workspace_status(raw, archived, request_rev, latest) == expected


class TestBuildWorkspace:

    def test_one_row_per_supplier_and_active_item(self, db_session, rfq_graph):
        rows = build_workspace(db_session, rfq_graph.rfq.id)
        assert [(r["supplier_name"], r["rfq_line_number"]) for r in rows] == [
            ("Acme Parts", 1), ("Acme Parts", 2), ("Borg Components", 1), ("Borg Components", 2),
        ]
        assert {r["line_status"] for r in rows} == {"REQUEST"}
        assert {r["workspace_status"] for r in rows} == {WorkspaceStatus.NOT_SENT}
        assert rows[0]["requested_original_cat_number"] == "OEM-100"
        assert rows[0]["selection_count"] == 0

    def test_archived_items_on_request(self, db_session, rfq_graph):
        rows = build_workspace(db_session, rfq_graph.rfq.id, include_archived=True)
        assert len(rows) == 6
        archived = [r for r in rows if r["is_archived"]]
        assert {r["rfq_item_id"] for r in archived} == {rfq_graph.archived_item.id}
        assert {r["workspace_status"] for r in archived} == {WorkspaceStatus.ARCHIVED}

    def test_supplier_filter(self, db_session, rfq_graph):
        rows = build_workspace(db_session, rfq_graph.rfq.id, supplier_id=rfq_graph.borg.id)
        assert {r["supplier_id"] for r in rows} == {rfq_graph.borg.id}

    def test_sent_lines_wait_or_respond(self, db_session, rfq_graph):
        for item in (rfq_graph.pump_item, rfq_graph.seal_item):
            upsert_status(
                db_session, rfq_graph.acme_rfq.id, item.id,
                status="REQUEST", last_request_rfq_revision_id=rfq_graph.rfq_revision.id,
            )
        line = _offer(db_session, rfq_graph, price=80.0)

        rows = {r["rfq_line_number"]: r for r in build_workspace(db_session, rfq_graph.rfq.id, rfq_graph.acme.id)}
        assert rows[1]["workspace_status"] == WorkspaceStatus.RESPONDED
        assert rows[1]["latest_response_line_id"] == line.id
        assert rows[1]["latest_price"] == 80.0
        assert rows[1]["last_request_rfq_revision_number"] == 1
        assert rows[2]["workspace_status"] == WorkspaceStatus.WAITING_RESPONSE
        assert rows[2]["latest_response_line_id"] is None

    def test_latest_line_follows_negotiation(self, db_session, rfq_graph):
        line = _offer(db_session, rfq_graph, price=80.0)
        successor = revise_line(db_session, line.id, {"price": 72.0}, reason="Discount")
        row = build_workspace(db_session, rfq_graph.rfq.id, rfq_graph.acme.id)[0]
        assert row["latest_response_line_id"] == successor.id
        assert row["latest_response_rev_number"] == 2
        assert row["latest_price"] == 72.0
        assert row["latest_entry_source"] == "NEGOTIATION"

    def test_one_row_per_selection(self, db_session, rfq_graph):
        for key in ("a", "b"):
            db_session.add(RfqSupplierLineSelection(
                rfq_supplier_id=rfq_graph.acme_rfq.id, rfq_item_id=rfq_graph.pump_item.id,
                selection_key=key, line_type="LINE",
            ))
        db_session.flush()
        rows = build_workspace(db_session, rfq_graph.rfq.id, rfq_graph.acme.id)
        assert [(r["rfq_line_number"], r["selected_selection_key"]) for r in rows] == [
            (1, "a"), (1, "b"), (2, None),
        ]


class TestListings:

    def test_lines_newest_first(self, db_session, rfq_graph):
        line = _offer(db_session, rfq_graph, price=80.0)
        successor = revise_line(db_session, line.id, {"price": 72.0}, reason="Discount")
        _offer(db_session, rfq_graph, line_number=2, price=5.0, supplier=rfq_graph.borg)

        rows = list_lines(db_session, rfq_graph.rfq.id)
        assert [r["id"] for r in rows[:2]] == [successor.id, line.id]
        assert rows[0]["response_rev_number"] == 2
        assert rows[0]["requested_original_cat_number"] == "OEM-100"
        assert rows[0]["supplier_name"] == "Acme Parts"
        assert rows[2]["supplier_id"] == rfq_graph.borg.id
        assert not any(r["accepted_from_existing_price"] for r in rows)

        only_borg = list_lines(db_session, rfq_graph.rfq.id, supplier_id=rfq_graph.borg.id)
        assert [r["rfq_line_number"] for r in only_borg] == [2]

    def test_accepted_from_existing_price(self, db_session, rfq_graph):
        db_session.add(RfqSupplierLineSelection(
            rfq_supplier_id=rfq_graph.acme_rfq.id, rfq_item_id=rfq_graph.pump_item.id,
            selection_key="main", line_type="LINE", original_part_id=rfq_graph.pump.id,
            use_existing_price=True,
        ))
        db_session.flush()
        _offer(db_session, rfq_graph)
        row = list_lines(db_session, rfq_graph.rfq.id)[0]
        assert row["selection_key"] == "main"
        assert row["accepted_from_existing_price"] is True

    def test_line_actions_by_line_number(self, db_session, rfq_graph):
        line = _offer(db_session, rfq_graph)
        revise_line(db_session, line.id, {"price": 90.0}, reason="Discount")
        _offer(db_session, rfq_graph, line_number=2)

        actions = list_line_actions(db_session, rfq_graph.rfq.id, line_number=1)
        assert [a["action_type"] for a in actions] == ["NEGOTIATION", "CREATE"]
        assert actions[0]["price"] == 90.0
        assert actions[0]["reason"] == "Discount"
        assert len(list_line_actions(db_session, rfq_graph.rfq.id)) == 3

    def test_revision_lines_and_responses(self, db_session, rfq_graph):
        first = _offer(db_session, rfq_graph)
        second = _offer(db_session, rfq_graph, line_number=2)
        rows = list_revision_lines(db_session, first.rfq_response_revision_id)
        assert [r["id"] for r in rows] == [second.id, first.id]

        responses = list_responses(db_session)
        assert len(responses) == 1
        assert responses[0]["supplier_name"] == "Acme Parts"
        assert responses[0]["rfq_id"] == rfq_graph.rfq.id
