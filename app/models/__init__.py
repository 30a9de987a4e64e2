"""
SQLAlchemy models for businesses, stores, orders and the warehouse workflow.
All model and enum definitions live here for simplicity and to avoid circular imports.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, ForeignKey, Enum as SQLEnum, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum
import uuid


def utcnow() -> datetime:
    """Naive UTC timestamp (columns are timezone-less on every backend)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


# Enums
class MemberStatus(str, enum.Enum):
    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"

class PartyType(str, enum.Enum):
    SUPPLIER = "supplier"
    CUSTOMER = "customer"
    BOTH = "both"

class PurchaseOrderStatus(str, enum.Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    PARTIALLY_RECEIVED = "partially_received"
    FULLY_RECEIVED = "fully_received"
    CLOSED = "closed"
    CANCELLED = "cancelled"

class PurchaseOrderItemStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIALLY_RECEIVED = "partially_received"
    FULLY_RECEIVED = "fully_received"

class GRNStatus(str, enum.Enum):
    DRAFT = "draft"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class PutAwayState(str, enum.Enum):
    INBOUND = "inbound"
    NONE = "none"
    OUTBOUND = "outbound"

class CheckoutSessionStatus(str, enum.Enum):
    PENDING = "pending"
    PHONE_VERIFIED = "phone_verified"
    ORDER_CREATED = "order_created"

class CustomerSessionPurpose(str, enum.Enum):
    BOOK_RETURN = "book_return"
    CONFIRM_CANCEL = "confirm_cancel"


# Users and tenancy
class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column("password_hash", String, nullable=False)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

class Business(Base):
    __tablename__ = "businesses"

    id = Column(String, primary_key=True, default=_uuid)
    owner_id = Column("owner_id", String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    vendor_name = Column("vendor_name", String, nullable=True)
    courier_priority_enabled = Column("courier_priority_enabled", Boolean, default=False)
    courier_priority_list = Column("courier_priority_list", JSON, default=list)
    created_at = Column("created_at", DateTime, server_default=func.now())

    owner = relationship("User")
    members = relationship("BusinessMember", back_populates="business", cascade="all, delete-orphan")
    store_links = relationship("BusinessStore", back_populates="business", cascade="all, delete-orphan")

class BusinessMember(Base):
    __tablename__ = "business_members"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column("user_id", String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String, default="member")
    status = Column(SQLEnum(MemberStatus), default=MemberStatus.ACTIVE)
    created_at = Column("created_at", DateTime, server_default=func.now())

    business = relationship("Business", back_populates="members")

    __table_args__ = (UniqueConstraint("business_id", "user_id", name="uq_business_members_business_user"),)

class Store(Base):
    """A Shopify shop, keyed by its myshopify domain."""
    __tablename__ = "stores"

    id = Column(String, primary_key=True)
    alias = Column(String, nullable=True)
    access_token = Column("access_token", String, nullable=True)  # Encrypted
    seller_name = Column("seller_name", String, nullable=True)
    seller_gstin = Column("seller_gstin", String, nullable=True)
    return_address = Column("return_address", String, nullable=True)
    whatsapp_phone_number_id = Column("whatsapp_phone_number_id", String, nullable=True)
    whatsapp_access_token = Column("whatsapp_access_token", String, nullable=True)  # Encrypted
    whatsapp_header_image_url = Column("whatsapp_header_image_url", String, nullable=True)
    active_templates = Column("active_templates", JSON, default=dict)
    book_return_enabled = Column("book_return_enabled", Boolean, default=False)
    confirm_cancel_enabled = Column("confirm_cancel_enabled", Boolean, default=False)
    created_at = Column("created_at", DateTime, server_default=func.now())

    business_links = relationship("BusinessStore", back_populates="store", cascade="all, delete-orphan")
    members = relationship("StoreMember", back_populates="store", cascade="all, delete-orphan")

class BusinessStore(Base):
    __tablename__ = "business_stores"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column("store_id", String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

    business = relationship("Business", back_populates="store_links")
    store = relationship("Store", back_populates="business_links")

    __table_args__ = (UniqueConstraint("business_id", "store_id", name="uq_business_stores_business_store"),)

class StoreMember(Base):
    __tablename__ = "store_members"

    id = Column(String, primary_key=True, default=_uuid)
    store_id = Column("store_id", String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column("user_id", String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String, default="member")
    status = Column(SQLEnum(MemberStatus), default=MemberStatus.ACTIVE)
    created_at = Column("created_at", DateTime, server_default=func.now())

    store = relationship("Store", back_populates="members")

    __table_args__ = (UniqueConstraint("store_id", "user_id", name="uq_store_members_store_user"),)

class ProviderCredential(Base):
    """Encrypted vendor credentials owned by a business or a store."""
    __tablename__ = "provider_credentials"

    id = Column(String, primary_key=True, default=_uuid)
    owner_type = Column("owner_type", String, nullable=False)  # "business" | "store"
    owner_id = Column("owner_id", String, nullable=False, index=True)
    provider_id = Column("provider_id", String, nullable=False, index=True)
    value_encrypted = Column("value_encrypted", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("owner_type", "owner_id", "provider_id", name="uq_provider_credentials_owner_provider"),
    )


# Catalogue
class Product(Base):
    """Business-side product, keyed by SKU within the business."""
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column(String, nullable=False)
    name = Column(String, nullable=False)
    weight = Column(Float, nullable=False)
    category = Column(String, nullable=False)
    description = Column(String, nullable=True)
    price = Column(Float, nullable=True)
    stock = Column(Integer, nullable=True)
    status = Column(String, default="active")
    mapped_variants = Column("mapped_variants", JSON, default=list)
    created_by = Column("created_by", String, nullable=True)
    updated_by = Column("updated_by", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("business_id", "sku", name="uq_products_business_sku"),)

class ProductLog(Base):
    __tablename__ = "product_logs"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column("product_id", String, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String, nullable=False)
    changes = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)
    performed_by = Column("performed_by", String, nullable=True)
    performed_at = Column("performed_at", DateTime, default=utcnow)

class DeletedProductLog(Base):
    __tablename__ = "deleted_product_logs"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column("product_id", String, nullable=False)
    sku = Column(String, nullable=False)
    product_data = Column("product_data", JSON, nullable=True)
    deleted_by = Column("deleted_by", String, nullable=True)
    deleted_at = Column("deleted_at", DateTime, default=utcnow)

class StoreProduct(Base):
    """Shopify product mirrored under a store, with variant to business SKU mappings."""
    __tablename__ = "store_products"

    id = Column(String, primary_key=True, default=_uuid)
    store_id = Column("store_id", String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column("product_id", String, nullable=False)
    title = Column(String, nullable=True)
    vendor = Column(String, nullable=True)
    variants = Column(JSON, default=list)
    variant_mappings = Column("variant_mappings", JSON, default=dict)
    variant_mapping_details = Column("variant_mapping_details", JSON, default=dict)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("store_id", "product_id", name="uq_store_products_store_product"),)


# Orders
class Order(Base):
    """Shopify order mirrored from webhooks plus workflow fields."""
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=_uuid)
    store_id = Column("store_id", String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column("order_id", String, nullable=False)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    shop_created_at = Column("shop_created_at", String, nullable=True)
    shop_updated_at = Column("shop_updated_at", String, nullable=True)
    financial_status = Column("financial_status", String, nullable=True)
    fulfillment_status = Column("fulfillment_status", String, default="unfulfilled")
    total_price = Column("total_price", Float, default=0)
    currency = Column(String, nullable=True)
    raw = Column(JSON, nullable=True)
    vendors = Column(JSON, default=list)
    tags_confirmed = Column("tags_confirmed", JSON, default=list)
    custom_status = Column("custom_status", String, nullable=True)
    last_webhook_topic = Column("last_webhook_topic", String, nullable=True)
    created_by_topic = Column("created_by_topic", String, nullable=True)
    updated_by_topic = Column("updated_by_topic", String, nullable=True)
    received_at = Column("received_at", DateTime, nullable=True)
    is_deleted = Column("is_deleted", Boolean, default=False)
    deleted_at = Column("deleted_at", DateTime, nullable=True)
    awb = Column(String, nullable=True)
    awb_reverse = Column("awb_reverse", String, nullable=True)
    courier = Column(String, nullable=True)
    pickup_ready = Column("pickup_ready", Boolean, default=False)
    pickup_ready_at = Column("pickup_ready_at", DateTime, nullable=True)
    last_status_update = Column("last_status_update", DateTime, nullable=True)
    last_updated_by = Column("last_updated_by", String, nullable=True)
    whatsapp_messages = Column("whatsapp_messages", JSON, default=list)
    return_variant_ids = Column("return_variant_ids", JSON, nullable=True)
    return_images = Column("return_images", JSON, nullable=True)
    return_reason = Column("return_reason", String, nullable=True)
    return_requested_at = Column("return_requested_at", DateTime, nullable=True)
    confirmed_at = Column("confirmed_at", DateTime, nullable=True)
    cancellation_requested_at = Column("cancellation_requested_at", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    status_logs = relationship(
        "OrderStatusLog",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusLog.created_at",
    )

    __table_args__ = (UniqueConstraint("store_id", "order_id", name="uq_orders_store_order"),)

class OrderStatusLog(Base):
    """Append-only custom status history of an order."""
    __tablename__ = "order_status_logs"

    id = Column(String, primary_key=True, default=_uuid)
    order_pk = Column("order_pk", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False)
    remarks = Column(String, nullable=True)
    created_by = Column("created_by", String, nullable=True)
    created_at = Column("created_at", DateTime, default=utcnow)

    order = relationship("Order", back_populates="status_logs")

class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String, primary_key=True, default=_uuid)
    source = Column("source", String, nullable=False, index=True)
    shop_domain = Column("shop_domain", String, nullable=True, index=True)
    topic = Column("topic", String, nullable=False, index=True)
    order_id = Column("order_id", String, nullable=True)
    payload_summary = Column("payload_summary", String, nullable=True)
    processed_at = Column("processed_at", DateTime, nullable=True)
    error = Column("error", String, nullable=True)
    created_at = Column("created_at", DateTime, default=utcnow)

class WhatsAppMessage(Base):
    __tablename__ = "whatsapp_messages"

    id = Column(String, primary_key=True, default=_uuid)
    message_id = Column("message_id", String, nullable=False, index=True)
    store_id = Column("store_id", String, nullable=False, index=True)
    order_id = Column("order_id", String, nullable=True)
    order_name = Column("order_name", String, nullable=True)
    template = Column(String, nullable=True)
    sent_to = Column("sent_to", String, nullable=True)
    message_status = Column("message_status", String, default="sent")
    sent_at = Column("sent_at", DateTime, default=utcnow)


# Warehouse
class Party(Base):
    __tablename__ = "parties"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    type = Column(SQLEnum(PartyType), nullable=False)
    code = Column(String, nullable=True)
    contact_person = Column("contact_person", String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    address = Column(JSON, nullable=True)
    gstin = Column(String, nullable=True, index=True)
    pan = Column(String, nullable=True)
    bank_details = Column("bank_details", JSON, nullable=True)
    default_payment_terms = Column("default_payment_terms", String, nullable=True)
    notes = Column(String, nullable=True)
    is_active = Column("is_active", Boolean, default=True)
    created_by = Column("created_by", String, nullable=True)
    updated_by = Column("updated_by", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

class Warehouse(Base):
    __tablename__ = "warehouses"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String, nullable=False)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    storage_capacity = Column("storage_capacity", Integer, default=0)
    operational_hours = Column("operational_hours", Integer, default=0)
    default_gst_state = Column("default_gst_state", String, nullable=True)
    is_deleted = Column("is_deleted", Boolean, default=False)
    deleted_at = Column("deleted_at", DateTime, nullable=True)
    created_by = Column("created_by", String, nullable=True)
    updated_by = Column("updated_by", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("business_id", "code", name="uq_warehouses_business_code"),)

class Zone(Base):
    __tablename__ = "zones"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    warehouse_id = Column("warehouse_id", String, ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String, nullable=False)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    is_deleted = Column("is_deleted", Boolean, default=False)
    deleted_at = Column("deleted_at", DateTime, nullable=True)
    created_by = Column("created_by", String, nullable=True)
    updated_by = Column("updated_by", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("business_id", "code", name="uq_zones_business_code"),)

class Rack(Base):
    __tablename__ = "racks"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    warehouse_id = Column("warehouse_id", String, ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False)
    zone_id = Column("zone_id", String, ForeignKey("zones.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String, nullable=True)
    name = Column(String, nullable=False)
    position = Column(Integer, default=1)
    is_deleted = Column("is_deleted", Boolean, default=False)
    deleted_at = Column("deleted_at", DateTime, nullable=True)
    created_by = Column("created_by", String, nullable=True)
    updated_by = Column("updated_by", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

class Shelf(Base):
    __tablename__ = "shelves"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    warehouse_id = Column("warehouse_id", String, ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False)
    zone_id = Column("zone_id", String, ForeignKey("zones.id", ondelete="CASCADE"), nullable=False)
    rack_id = Column("rack_id", String, ForeignKey("racks.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String, nullable=True)
    name = Column(String, nullable=False)
    position = Column(Integer, default=0)
    capacity = Column(Integer, nullable=True)
    is_deleted = Column("is_deleted", Boolean, default=False)
    deleted_at = Column("deleted_at", DateTime, nullable=True)
    created_by = Column("created_by", String, nullable=True)
    updated_by = Column("updated_by", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

class Counter(Base):
    """Per-business document number sequence (purchaseOrders, grns)."""
    __tablename__ = "counters"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    last_number = Column("last_number", Integer, default=0, nullable=False)
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("business_id", "name", name="uq_counters_business_name"),)

class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    po_number = Column("po_number", String, nullable=False)
    supplier_party_id = Column("supplier_party_id", String, ForeignKey("parties.id", ondelete="RESTRICT"), nullable=False, index=True)
    supplier_name = Column("supplier_name", String, nullable=False)
    warehouse_id = Column("warehouse_id", String, nullable=False)
    warehouse_name = Column("warehouse_name", String, nullable=True)
    status = Column(SQLEnum(PurchaseOrderStatus), default=PurchaseOrderStatus.DRAFT, nullable=False)
    ordered_skus = Column("ordered_skus", JSON, default=list)
    item_count = Column("item_count", Integer, default=0)
    total_amount = Column("total_amount", Float, default=0)
    currency = Column(String, default="INR")
    expected_date = Column("expected_date", String, nullable=False)
    notes = Column(String, nullable=True)
    confirmed_at = Column("confirmed_at", DateTime, nullable=True)
    completed_at = Column("completed_at", DateTime, nullable=True)
    cancelled_at = Column("cancelled_at", DateTime, nullable=True)
    cancel_reason = Column("cancel_reason", String, nullable=True)
    created_by = Column("created_by", String, nullable=True)
    updated_by = Column("updated_by", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    items = relationship(
        "PurchaseOrderItem",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.position",
    )

    __table_args__ = (UniqueConstraint("business_id", "po_number", name="uq_purchase_orders_business_number"),)

class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"

    id = Column(String, primary_key=True, default=_uuid)
    purchase_order_id = Column("purchase_order_id", String, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0)
    sku = Column(String, nullable=False)
    product_name = Column("product_name", String, nullable=False)
    ordered_qty = Column("ordered_qty", Integer, nullable=False)
    unit_cost = Column("unit_cost", Float, nullable=False)
    received_qty = Column("received_qty", Integer, default=0, nullable=False)
    rejected_qty = Column("rejected_qty", Integer, default=0, nullable=False)
    status = Column(SQLEnum(PurchaseOrderItemStatus), default=PurchaseOrderItemStatus.PENDING, nullable=False)

    purchase_order = relationship("PurchaseOrder", back_populates="items")

class GRN(Base):
    __tablename__ = "grns"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    grn_number = Column("grn_number", String, nullable=False)
    po_id = Column("po_id", String, ForeignKey("purchase_orders.id", ondelete="RESTRICT"), nullable=False, index=True)
    po_number = Column("po_number", String, nullable=False)
    warehouse_id = Column("warehouse_id", String, nullable=False)
    warehouse_name = Column("warehouse_name", String, nullable=True)
    status = Column(SQLEnum(GRNStatus), default=GRNStatus.DRAFT, nullable=False)
    received_skus = Column("received_skus", JSON, default=list)
    total_expected_qty = Column("total_expected_qty", Integer, default=0)
    total_received_qty = Column("total_received_qty", Integer, default=0)
    total_not_received_qty = Column("total_not_received_qty", Integer, default=0)
    total_received_value = Column("total_received_value", Float, default=0)
    received_by = Column("received_by", String, nullable=True)
    received_at = Column("received_at", DateTime, default=utcnow)
    inspected_by = Column("inspected_by", String, nullable=True)
    notes = Column(String, nullable=True)
    completed_at = Column("completed_at", DateTime, nullable=True)
    completed_by = Column("completed_by", String, nullable=True)
    cancelled_at = Column("cancelled_at", DateTime, nullable=True)
    total_upcs_created = Column("total_upcs_created", Integer, nullable=True)
    created_by = Column("created_by", String, nullable=True)
    updated_by = Column("updated_by", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    purchase_order = relationship("PurchaseOrder")
    items = relationship(
        "GRNItem",
        back_populates="grn",
        cascade="all, delete-orphan",
        order_by="GRNItem.position",
    )

    __table_args__ = (UniqueConstraint("business_id", "grn_number", name="uq_grns_business_number"),)

class GRNItem(Base):
    __tablename__ = "grn_items"

    id = Column(String, primary_key=True, default=_uuid)
    grn_id = Column("grn_id", String, ForeignKey("grns.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0)
    sku = Column(String, nullable=False)
    product_name = Column("product_name", String, nullable=False)
    expected_qty = Column("expected_qty", Integer, default=0)
    received_qty = Column("received_qty", Integer, default=0)
    not_received_qty = Column("not_received_qty", Integer, default=0)
    accepted_qty = Column("accepted_qty", Integer, default=0)
    rejected_qty = Column("rejected_qty", Integer, default=0)
    rejection_reason = Column("rejection_reason", String, nullable=True)
    unit_cost = Column("unit_cost", Float, default=0)
    total_cost = Column("total_cost", Float, default=0)

    grn = relationship("GRN", back_populates="items")

class UPC(Base):
    """A single physical unit of a product moving through put-away and pickup."""
    __tablename__ = "upcs"

    id = Column(String, primary_key=True, default=_uuid)
    business_id = Column("business_id", String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column("product_id", String, nullable=False, index=True)  # business SKU
    grn_id = Column("grn_id", String, nullable=True, index=True)
    put_away = Column("put_away", SQLEnum(PutAwayState), default=PutAwayState.INBOUND, nullable=False)
    warehouse_id = Column("warehouse_id", String, nullable=True)
    zone_id = Column("zone_id", String, nullable=True)
    rack_id = Column("rack_id", String, nullable=True)
    shelf_id = Column("shelf_id", String, nullable=True)
    placement_id = Column("placement_id", String, nullable=True, index=True)
    store_id = Column("store_id", String, nullable=True)
    order_id = Column("order_id", String, nullable=True)
    created_by = Column("created_by", String, nullable=True)
    updated_by = Column("updated_by", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())


# Storefront checkout
class DraftOrder(Base):
    __tablename__ = "draft_orders"

    id = Column(String, primary_key=True, default=_uuid)
    store_id = Column("store_id", String, nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    received_at = Column("received_at", DateTime, default=utcnow)

class CheckoutSession(Base):
    __tablename__ = "checkout_sessions"

    id = Column(String, primary_key=True, default=_uuid)
    shop_domain = Column("shop_domain", String, nullable=False, index=True)
    draft_order_id = Column("draft_order_id", String, nullable=True)
    status = Column(SQLEnum(CheckoutSessionStatus), default=CheckoutSessionStatus.PENDING, nullable=False)
    customer_phone = Column("customer_phone", String, nullable=True)
    temp_phone = Column("temp_phone", String, nullable=True)
    otp_hash = Column("otp_hash", String, nullable=True)
    otp_generated_at = Column("otp_generated_at", DateTime, nullable=True)
    otp_attempt_count = Column("otp_attempt_count", Integer, nullable=True)
    phone_verified_at = Column("phone_verified_at", DateTime, nullable=True)
    cart_token = Column("cart_token", String, nullable=True)
    client_nonce = Column("client_nonce", String, nullable=True)
    expires_at = Column("expires_at", DateTime, nullable=False, index=True)
    order_id = Column("order_id", String, nullable=True)
    order_name = Column("order_name", String, nullable=True)
    order_number = Column("order_number", Integer, nullable=True)
    order_status_url = Column("order_status_url", String, nullable=True)
    created_at = Column("created_at", DateTime, default=utcnow)
    updated_at = Column("updated_at", DateTime, default=utcnow, onupdate=utcnow)

class CheckoutCustomer(Base):
    __tablename__ = "checkout_customers"

    phone = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    first_name = Column("first_name", String, nullable=True)
    last_name = Column("last_name", String, nullable=True)
    email = Column(String, nullable=True)
    address = Column(String, nullable=True)
    last_verified_at = Column("last_verified_at", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, default=utcnow)
    updated_at = Column("updated_at", DateTime, default=utcnow, onupdate=utcnow)

class OtpRateCounter(Base):
    """OTP sends per hour bucket, keyed "{kind}:{key}:{bucket_start}" with kind session, phone or ip."""
    __tablename__ = "otp_rate_counters"

    id = Column(String, primary_key=True)
    kind = Column(String, nullable=False)
    key = Column(String, nullable=False)
    bucket_start = Column("bucket_start", DateTime, nullable=False)
    count = Column(Integer, default=0, nullable=False)
    expires_at = Column("expires_at", DateTime, nullable=False, index=True)
    updated_at = Column("updated_at", DateTime, default=utcnow, onupdate=utcnow)

class CustomerSession(Base):
    """Storefront self-service page visit; later calls must echo the CSRF token."""
    __tablename__ = "customer_sessions"

    id = Column(String, primary_key=True, default=_uuid)
    store_id = Column("store_id", String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    purpose = Column(SQLEnum(CustomerSessionPurpose), nullable=False)
    csrf_token = Column("csrf_token", String, nullable=False)
    ip = Column(String, nullable=True, index=True)
    user_agent = Column("user_agent", String, nullable=True)
    is_active = Column("is_active", Boolean, default=True, nullable=False)
    request_count = Column("request_count", Integer, default=0, nullable=False)
    expires_at = Column("expires_at", DateTime, nullable=False, index=True)
    last_activity = Column("last_activity", DateTime, default=utcnow)
    ended_at = Column("ended_at", DateTime, nullable=True)
    end_reason = Column("end_reason", String, nullable=True)
    created_at = Column("created_at", DateTime, default=utcnow)
