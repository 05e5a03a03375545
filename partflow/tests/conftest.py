"""
Shared fixtures: in-memory database, a seeded RFQ graph and an API client.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-partflow-tests-0123456789")

from types import SimpleNamespace
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from partflow.core.security import create_access_token
from partflow.db.models import (
    ClientRequest, ClientRequestRevision, ClientRequestRevisionItem, Material, OriginalPart,
    PartSupplier, Rfq, RfqItem, RfqRevision, RfqSupplier,
)
from partflow.db.session import Base, SessionLocal, engine, get_db


# ============= DATABASE =============

@pytest.fixture
def db_session():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def request_status_jobs():
    """Keep the request-status hook away from Redis."""
    with patch("partflow.services.request_status.enqueue_request_status_recompute") as mock_enqueue:
        yield mock_enqueue


@pytest.fixture
def rfq_graph(db_session: Session):
    """
    One client request with two revisions and an RFQ that points at the
    second one. Revision 1 had a single line (now archived); revision 2 asks
    for a pump (line 1) and a seal kit (line 2). Two suppliers are invited.
    """
    db = db_session
    acme = PartSupplier(name="Acme Parts")
    borg = PartSupplier(name="Borg Components")
    pump = OriginalPart(cat_number="OEM-100", description_en="Hydraulic pump", description_ru="Насос")
    seal = OriginalPart(cat_number="OEM-200", description_en="Seal kit")
    valve = OriginalPart(cat_number="OEM-300", description_en="Valve")
    steel = Material(code="M-01", name="Steel")
    db.add_all([acme, borg, pump, seal, valve, steel])
    db.flush()

    request = ClientRequest(title="Excavator overhaul", status="open")
    db.add(request)
    db.flush()
    old_revision = ClientRequestRevision(client_request_id=request.id, rev_number=1)
    active_revision = ClientRequestRevision(client_request_id=request.id, rev_number=2)
    db.add_all([old_revision, active_revision])
    db.flush()

    old_line = ClientRequestRevisionItem(
        client_request_revision_id=old_revision.id, line_number=1, original_part_id=valve.id,
        client_description="Valve", requested_qty=1,
    )
    pump_line = ClientRequestRevisionItem(
        client_request_revision_id=active_revision.id, line_number=1, original_part_id=pump.id,
        client_description="Hydraulic pump", requested_qty=2, uom="pcs",
    )
    seal_line = ClientRequestRevisionItem(
        client_request_revision_id=active_revision.id, line_number=2, original_part_id=seal.id,
        client_description="Seal kit", requested_qty=4, uom="set",
    )
    db.add_all([old_line, pump_line, seal_line])
    db.flush()

    rfq = Rfq(rfq_number="RFQ-0001", client_request_revision_id=active_revision.id)
    db.add(rfq)
    db.flush()
    rfq_revision = RfqRevision(rfq_id=rfq.id, rev_number=1)
    archived_item = RfqItem(rfq_id=rfq.id, client_request_revision_item_id=old_line.id, line_number=1)
    pump_item = RfqItem(rfq_id=rfq.id, client_request_revision_item_id=pump_line.id, line_number=1, requested_qty=2)
    seal_item = RfqItem(rfq_id=rfq.id, client_request_revision_item_id=seal_line.id, line_number=2, requested_qty=4)
    db.add_all([rfq_revision, archived_item, pump_item, seal_item])
    db.flush()

    acme_rfq = RfqSupplier(rfq_id=rfq.id, supplier_id=acme.id)
    borg_rfq = RfqSupplier(rfq_id=rfq.id, supplier_id=borg.id)
    db.add_all([acme_rfq, borg_rfq])
    db.commit()

    return SimpleNamespace(
        acme=acme, borg=borg, pump=pump, seal=seal, valve=valve, steel=steel,
        request=request, rfq=rfq, rfq_revision=rfq_revision,
        archived_item=archived_item, pump_item=pump_item, seal_item=seal_item,
        acme_rfq=acme_rfq, borg_rfq=borg_rfq,
    )


# ============= API =============

@pytest.fixture
def client(db_session: Session):
    from partflow.main import app

    def override_get_db():
        try:
            yield db_session
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def operator_headers():
    token = create_access_token({"sub": "7", "email": "operator@partflow.test", "role": "operator"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def viewer_headers():
    token = create_access_token({"sub": "8", "email": "viewer@partflow.test", "role": "viewer"})
    return {"Authorization": f"Bearer {token}"}
