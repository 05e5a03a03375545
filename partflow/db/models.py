"""
SQLAlchemy ORM models for PartFlow Sourcing.

The client request / RFQ tables are owned by neighbouring services; only the
columns the negotiation and matching engine reads are mapped here.
"""
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Date, Float,
    ForeignKey, Enum, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func, text
import enum

from partflow.db.session import Base


# ============= ENUMS =============
# Stored as VARCHAR (native_enum=False) so the same schema runs on
# PostgreSQL and SQLite; values, not names, are persisted.

class RfqSupplierStatus(str, enum.Enum):
    INVITED = "invited"
    RESPONDED = "responded"


class ResponseStatus(str, enum.Enum):
    RECEIVED = "received"
    REVIEW = "review"
    APPROVED = "approved"


class SupplierReplyStatus(str, enum.Enum):
    QUOTED = "QUOTED"
    NO_STOCK = "NO_STOCK"
    DISCONTINUED = "DISCONTINUED"
    NEEDS_CLARIFICATION = "NEEDS_CLARIFICATION"
    NO_RESPONSE = "NO_RESPONSE"


class OfferType(str, enum.Enum):
    OEM = "OEM"
    ANALOG = "ANALOG"
    UNKNOWN = "UNKNOWN"


class EntrySource(str, enum.Enum):
    SUPPLIER_FILE = "SUPPLIER_FILE"
    SUPPLIER_MANUAL = "SUPPLIER_MANUAL"
    NEGOTIATION = "NEGOTIATION"


class LineActionType(str, enum.Enum):
    CREATE = "CREATE"
    NEGOTIATION = "NEGOTIATION"
    LINK_SUPPLIER_PART = "LINK_SUPPLIER_PART"


class LineStatusValue(str, enum.Enum):
    NONE = "NONE"
    REQUEST = "REQUEST"
    ACCEPTED_EXISTING = "ACCEPTED_EXISTING"
    ARCHIVED = "ARCHIVED"


class SelectionLineType(str, enum.Enum):
    LINE = "LINE"
    BOM_COMPONENT = "BOM_COMPONENT"
    KIT_ROLE = "KIT_ROLE"
    ALTERNATE = "ALTERNATE"


class PriceListStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    SUPERSEDED = "superseded"


class PriceListLineStatus(str, enum.Enum):
    PENDING = "pending"
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    NEW_PART_REQUIRED = "new_part_required"
    ERROR = "error"
    IGNORED = "ignored"


# Line states that block activation
PRICE_LIST_ISSUE_STATUSES = (
    PriceListLineStatus.ERROR.value,
    PriceListLineStatus.AMBIGUOUS.value,
    PriceListLineStatus.NEW_PART_REQUIRED.value,
)


class PriceSourceType(str, enum.Enum):
    PRICE_LIST = "PRICE_LIST"
    RFQ_RESPONSE = "RFQ_RESPONSE"


def enum_values(enum_cls):
    return [e.value for e in enum_cls]


def model_to_dict(obj) -> dict:
    """Column values of a mapped row, keyed by column name."""
    return {column.key: getattr(obj, column.key) for column in obj.__table__.columns}


RfqSupplierStatusType = Enum(*enum_values(RfqSupplierStatus), name="rfqsupplierstatus", native_enum=False)
ResponseStatusType = Enum(*enum_values(ResponseStatus), name="responsestatus", native_enum=False)
SupplierReplyStatusType = Enum(*enum_values(SupplierReplyStatus), name="supplierreplystatus", native_enum=False)
OfferTypeType = Enum(*enum_values(OfferType), name="offertype", native_enum=False)
LineActionTypeType = Enum(*enum_values(LineActionType), name="lineactiontype", native_enum=False)
LineStatusValueType = Enum(*enum_values(LineStatusValue), name="linestatusvalue", native_enum=False)
PriceListStatusType = Enum(*enum_values(PriceListStatus), name="priceliststatus", native_enum=False)
PriceListLineStatusType = Enum(*enum_values(PriceListLineStatus), name="pricelistlinestatus", native_enum=False)
PriceSourceTypeType = Enum(*enum_values(PriceSourceType), name="pricesourcetype", native_enum=False)


# ============= REFERENCE RECORDS =============

class PartSupplier(Base):
    """Supplier master record."""
    __tablename__ = "part_suppliers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class OriginalPart(Base):
    """OEM catalog part."""
    __tablename__ = "original_parts"

    id = Column(Integer, primary_key=True, index=True)
    cat_number = Column(String(128), nullable=False, index=True)
    description_ru = Column(Text)
    description_en = Column(Text)


class Material(Base):
    __tablename__ = "materials"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), index=True)
    name = Column(String(255))


# ============= CLIENT REQUESTS & RFQs =============

class ClientRequest(Base):
    __tablename__ = "client_requests"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255))
    status = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ClientRequestRevision(Base):
    __tablename__ = "client_request_revisions"

    id = Column(Integer, primary_key=True, index=True)
    client_request_id = Column(Integer, ForeignKey("client_requests.id"), nullable=False, index=True)
    rev_number = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ClientRequestRevisionItem(Base):
    """One requested line of a client request revision."""
    __tablename__ = "client_request_revision_items"

    id = Column(Integer, primary_key=True, index=True)
    client_request_revision_id = Column(
        Integer, ForeignKey("client_request_revisions.id"), nullable=False, index=True
    )
    line_number = Column(Integer, nullable=False)
    original_part_id = Column(Integer, ForeignKey("original_parts.id"))
    client_description = Column(Text)
    requested_qty = Column(Float)
    uom = Column(String(32))


class Rfq(Base):
    """RFQ issued against one revision of a client request.

    `client_request_revision_id` always points at the active revision; RFQ
    items created from older revisions are treated as archived.
    """
    __tablename__ = "rfqs"

    id = Column(Integer, primary_key=True, index=True)
    rfq_number = Column(String(50), unique=True)
    client_request_revision_id = Column(Integer, ForeignKey("client_request_revisions.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    items = relationship("RfqItem", back_populates="rfq")


class RfqRevision(Base):
    """A version of the RFQ as sent to suppliers."""
    __tablename__ = "rfq_revisions"

    id = Column(Integer, primary_key=True, index=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), nullable=False, index=True)
    rev_number = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RfqItem(Base):
    __tablename__ = "rfq_items"

    id = Column(Integer, primary_key=True, index=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), nullable=False, index=True)
    client_request_revision_item_id = Column(
        Integer, ForeignKey("client_request_revision_items.id"), nullable=False
    )
    line_number = Column(Integer, nullable=False)
    requested_qty = Column(Float)
    uom = Column(String(32))

    rfq = relationship("Rfq", back_populates="items")
    request_item = relationship("ClientRequestRevisionItem")


class RfqItemComponent(Base):
    """BOM component of an RFQ item."""
    __tablename__ = "rfq_item_components"

    id = Column(Integer, primary_key=True, index=True)
    rfq_item_id = Column(Integer, ForeignKey("rfq_items.id", ondelete="CASCADE"), nullable=False, index=True)
    original_part_id = Column(Integer, ForeignKey("original_parts.id"))
    qty = Column(Float)


class RfqSupplier(Base):
    """Pairing of an RFQ with an invited supplier."""
    __tablename__ = "rfq_suppliers"
    __table_args__ = (
        UniqueConstraint("rfq_id", "supplier_id", name="uq_rfq_supplier"),
    )

    id = Column(Integer, primary_key=True, index=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("part_suppliers.id"), nullable=False, index=True)
    status = Column(RfqSupplierStatusType, nullable=False, default=RfqSupplierStatus.INVITED.value)
    invited_at = Column(DateTime(timezone=True), server_default=func.now())
    responded_at = Column(DateTime(timezone=True))

    supplier = relationship("PartSupplier")
    rfq = relationship("Rfq")
    response = relationship("SupplierResponse", back_populates="rfq_supplier", uselist=False)


class RfqSupplierLineSelection(Base):
    """Structural role of an RFQ item that a supplier was asked to quote."""
    __tablename__ = "rfq_supplier_line_selections"
    __table_args__ = (
        UniqueConstraint("rfq_supplier_id", "rfq_item_id", "selection_key", name="uq_line_selection_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    rfq_supplier_id = Column(Integer, ForeignKey("rfq_suppliers.id", ondelete="CASCADE"), nullable=False)
    rfq_item_id = Column(Integer, ForeignKey("rfq_items.id", ondelete="CASCADE"), nullable=False)
    selection_key = Column(String(128), nullable=False)
    line_type = Column(String(32), nullable=False, default=SelectionLineType.LINE.value)
    line_label = Column(String(255))
    line_description = Column(Text)
    original_part_id = Column(Integer, ForeignKey("original_parts.id"))
    alt_original_part_id = Column(Integer, ForeignKey("original_parts.id"))
    bundle_id = Column(Integer, ForeignKey("supplier_bundles.id"))
    bundle_item_id = Column(Integer, ForeignKey("supplier_bundle_items.id"))
    use_existing_price = Column(Boolean, default=False, nullable=False)


# ============= BUNDLES =============

class SupplierBundle(Base):
    """Kit of roles that together make up one original part."""
    __tablename__ = "supplier_bundles"

    id = Column(Integer, primary_key=True, index=True)
    original_part_id = Column(Integer, ForeignKey("original_parts.id"))
    name = Column(String(255))


class SupplierBundleItem(Base):
    __tablename__ = "supplier_bundle_items"

    id = Column(Integer, primary_key=True, index=True)
    bundle_id = Column(Integer, ForeignKey("supplier_bundles.id", ondelete="CASCADE"), nullable=False)
    role_label = Column(String(255))


class SupplierBundleItemLink(Base):
    """Supplier part that can fill a bundle role."""
    __tablename__ = "supplier_bundle_item_links"
    __table_args__ = (
        UniqueConstraint("item_id", "supplier_part_id", name="uq_bundle_item_link"),
    )

    id = Column(Integer, primary_key=True, index=True)
    item_id = Column(Integer, ForeignKey("supplier_bundle_items.id", ondelete="CASCADE"), nullable=False)
    supplier_part_id = Column(Integer, ForeignKey("supplier_parts.id"), nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    note = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ============= SUPPLIER RESPONSES =============

class SupplierResponse(Base):
    """The single response container of an RFQ supplier."""
    __tablename__ = "rfq_supplier_responses"

    id = Column(Integer, primary_key=True, index=True)
    rfq_supplier_id = Column(Integer, ForeignKey("rfq_suppliers.id"), nullable=False, unique=True)
    status = Column(ResponseStatusType, nullable=False, default=ResponseStatus.RECEIVED.value)
    created_by_user_id = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    rfq_supplier = relationship("RfqSupplier", back_populates="response")
    revisions = relationship(
        "ResponseRevision", back_populates="response", order_by="ResponseRevision.rev_number"
    )


class ResponseRevision(Base):
    """Immutable, gapless revision of a supplier response."""
    __tablename__ = "rfq_response_revisions"
    __table_args__ = (
        UniqueConstraint("rfq_supplier_response_id", "rev_number", name="uq_response_rev_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    rfq_supplier_response_id = Column(Integer, ForeignKey("rfq_supplier_responses.id"), nullable=False)
    rev_number = Column(Integer, nullable=False)
    note = Column(Text)
    created_by_user_id = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    response = relationship("SupplierResponse", back_populates="revisions")
    lines = relationship("ResponseLine", back_populates="revision")


class ResponseLine(Base):
    """One offer line. Never updated; negotiation inserts a successor."""
    __tablename__ = "rfq_response_lines"
    __table_args__ = (
        Index("ix_response_lines_revision", "rfq_response_revision_id"),
        Index("ix_response_lines_item", "rfq_item_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    rfq_response_revision_id = Column(Integer, ForeignKey("rfq_response_revisions.id"), nullable=False)
    rfq_item_id = Column(Integer, ForeignKey("rfq_items.id"), nullable=False)
    selection_key = Column(String(128))
    supplier_part_id = Column(Integer, ForeignKey("supplier_parts.id"))
    original_part_id = Column(Integer, ForeignKey("original_parts.id"))
    requested_original_part_id = Column(Integer, ForeignKey("original_parts.id"))
    bundle_id = Column(Integer, ForeignKey("supplier_bundles.id"))
    rfq_item_component_id = Column(Integer, ForeignKey("rfq_item_components.id"))
    based_on_response_line_id = Column(Integer, ForeignKey("rfq_response_lines.id"))

    offer_type = Column(OfferTypeType, nullable=False, default=OfferType.UNKNOWN.value)
    supplier_reply_status = Column(
        SupplierReplyStatusType, nullable=False, default=SupplierReplyStatus.QUOTED.value
    )
    offered_qty = Column(Float)
    moq = Column(Integer)
    packaging = Column(String(255))
    lead_time_days = Column(Integer)
    price = Column(Float)
    currency = Column(String(3))
    validity_days = Column(Integer)
    payment_terms = Column(String(255))
    incoterms = Column(String(16))
    note = Column(Text)
    entry_source = Column(String(32), nullable=False, default=EntrySource.SUPPLIER_FILE.value)
    change_reason = Column(Text)
    created_by_user_id = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    revision = relationship("ResponseRevision", back_populates="lines")
    supplier_part = relationship("SupplierPart")
    actions = relationship("LineAction", back_populates="line", order_by="LineAction.id")


class LineAction(Base):
    """Append-only audit record of a response line."""
    __tablename__ = "rfq_response_line_actions"

    id = Column(Integer, primary_key=True, index=True)
    rfq_response_line_id = Column(Integer, ForeignKey("rfq_response_lines.id"), nullable=False, index=True)
    action_type = Column(LineActionTypeType, nullable=False)
    payload_json = Column(JSON)
    reason = Column(Text)
    created_by_user_id = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    line = relationship("ResponseLine", back_populates="actions")


class LineStatus(Base):
    """Projection of the resolution state per (RFQ supplier, RFQ item)."""
    __tablename__ = "rfq_supplier_line_status"
    __table_args__ = (
        UniqueConstraint("rfq_supplier_id", "rfq_item_id", name="uq_line_status_pair"),
    )

    id = Column(Integer, primary_key=True, index=True)
    rfq_supplier_id = Column(Integer, ForeignKey("rfq_suppliers.id", ondelete="CASCADE"), nullable=False)
    rfq_item_id = Column(Integer, ForeignKey("rfq_items.id", ondelete="CASCADE"), nullable=False)
    status = Column(LineStatusValueType, nullable=False, default=LineStatusValue.NONE.value)
    source_type = Column(String(32))
    source_ref = Column(String(64))
    note = Column(Text)
    last_request_rfq_revision_id = Column(Integer, ForeignKey("rfq_revisions.id"))
    last_response_revision_id = Column(Integer, ForeignKey("rfq_response_revisions.id"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ============= SUPPLIER CATALOG =============

class SupplierPart(Base):
    """Catalog entry owned by one supplier."""
    __tablename__ = "supplier_parts"
    __table_args__ = (
        UniqueConstraint("supplier_id", "canonical_part_number", name="uq_supplier_part_canonical"),
        Index("ix_supplier_parts_number", "supplier_id", "supplier_part_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    supplier_id = Column(Integer, ForeignKey("part_suppliers.id"), nullable=False, index=True)
    supplier_part_number = Column(String(128), nullable=False)
    canonical_part_number = Column(String(128))
    description_ru = Column(Text)
    description_en = Column(Text)
    part_type = Column(String(16))
    lead_time_days = Column(Integer)
    min_order_qty = Column(Integer)
    packaging = Column(String(255))
    weight_kg = Column(Float)
    length_cm = Column(Float)
    width_cm = Column(Float)
    height_cm = Column(Float)
    is_overweight = Column(Boolean)
    is_oversize = Column(Boolean)
    default_material_id = Column(Integer, ForeignKey("materials.id"))
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    aliases = relationship("SupplierPartAlias", back_populates="supplier_part")


class SupplierPartOriginal(Base):
    """Link between a supplier part and the OEM part it replaces."""
    __tablename__ = "supplier_part_originals"
    __table_args__ = (
        UniqueConstraint("supplier_part_id", "original_part_id", name="uq_supplier_part_original"),
    )

    id = Column(Integer, primary_key=True, index=True)
    supplier_part_id = Column(Integer, ForeignKey("supplier_parts.id", ondelete="CASCADE"), nullable=False)
    original_part_id = Column(Integer, ForeignKey("original_parts.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SupplierPartAlias(Base):
    """Alternative spelling of a supplier part number."""
    __tablename__ = "supplier_part_aliases"
    __table_args__ = (
        UniqueConstraint("supplier_part_id", "alias_canonical_part_number", name="uq_supplier_part_alias"),
        Index("ix_supplier_part_aliases_lookup", "supplier_id", "alias_canonical_part_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    supplier_id = Column(Integer, ForeignKey("part_suppliers.id"), nullable=False)
    supplier_part_id = Column(Integer, ForeignKey("supplier_parts.id", ondelete="CASCADE"), nullable=False)
    alias_part_number = Column(String(128), nullable=False)
    alias_canonical_part_number = Column(String(128), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    note = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    supplier_part = relationship("SupplierPart", back_populates="aliases")


# ============= PRICE DATA =============

class SupplierPartPrice(Base):
    """Append-only price history."""
    __tablename__ = "supplier_part_prices"
    __table_args__ = (
        Index("ix_supplier_part_prices_source", "source_type", "source_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    supplier_part_id = Column(Integer, ForeignKey("supplier_parts.id"), nullable=False, index=True)
    material_id = Column(Integer, ForeignKey("materials.id"))
    price = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)
    date = Column(Date, nullable=False)
    comment = Column(Text)
    offer_type = Column(String(16))
    lead_time_days = Column(Integer)
    min_order_qty = Column(Integer)
    packaging = Column(String(255))
    validity_days = Column(Integer)
    source_type = Column(PriceSourceTypeType, nullable=False)
    source_subtype = Column(String(32))
    source_id = Column(Integer)
    created_by_user_id = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SupplierPriceList(Base):
    __tablename__ = "supplier_price_lists"
    __table_args__ = (
        # At most one active list per supplier
        Index(
            "uq_supplier_price_lists_active",
            "supplier_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    supplier_id = Column(Integer, ForeignKey("part_suppliers.id"), nullable=False, index=True)
    list_code = Column(String(64))
    list_name = Column(String(255))
    status = Column(PriceListStatusType, nullable=False, default=PriceListStatus.DRAFT.value)
    currency_default = Column(String(3))
    valid_from = Column(Date)
    valid_to = Column(Date)
    note = Column(Text)
    source_file_name = Column(String(255))
    uploaded_by_user_id = Column(Integer)
    activated_by_user_id = Column(Integer)
    activated_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    supplier = relationship("PartSupplier")
    lines = relationship(
        "SupplierPriceListLine",
        back_populates="price_list",
        cascade="all, delete-orphan",
    )


class SupplierPriceListLine(Base):
    """Raw imported row plus its match outcome."""
    __tablename__ = "supplier_price_list_lines"
    __table_args__ = (
        Index("ix_price_list_lines_list_status", "supplier_price_list_id", "line_status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    supplier_price_list_id = Column(
        Integer, ForeignKey("supplier_price_lists.id", ondelete="CASCADE"), nullable=False
    )
    source_row_no = Column(Integer)
    line_status = Column(PriceListLineStatusType, nullable=False, default=PriceListLineStatus.PENDING.value)
    supplier_part_number_raw = Column(String(255))
    supplier_part_number_canonical = Column(String(128))
    description_raw = Column(Text)
    material_code_raw = Column(String(64))
    price = Column(Float)
    currency = Column(String(3))
    offer_type = Column(String(16))
    lead_time_days = Column(Integer)
    min_order_qty = Column(Integer)
    packaging = Column(String(255))
    validity_days = Column(Integer)
    valid_from = Column(Date)
    valid_to = Column(Date)
    comment = Column(Text)
    matched_supplier_part_id = Column(Integer, ForeignKey("supplier_parts.id"))
    matched_material_id = Column(Integer, ForeignKey("materials.id"))
    match_confidence = Column(Integer)
    match_method = Column(String(32))
    match_note = Column(Text)
    imported_by_user_id = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    price_list = relationship("SupplierPriceList", back_populates="lines")
    supplier_part = relationship("SupplierPart")
    material = relationship("Material")
