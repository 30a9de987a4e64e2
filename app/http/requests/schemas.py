"""
Pydantic schemas for request validation (Http/Requests).
Field names follow the dashboard's camelCase JSON.
"""
from datetime import date
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from app.models import GRNStatus, PurchaseOrderStatus


def _upper_sku(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip().upper()
    if not v:
        raise ValueError("sku cannot be empty")
    return v


# Auth Schemas
class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if "@" not in v or len(v.split("@")) != 2:
            raise ValueError("Invalid email format")
        return v.lower().strip()


class RegisterRequest(LoginRequest):
    name: str
    password: str = Field(..., min_length=8)


class BusinessCreate(BaseModel):
    name: str = Field(..., min_length=1)
    vendorName: Optional[str] = None


class StoreConnectRequest(BaseModel):
    businessId: str
    shop: str
    accessToken: str
    alias: Optional[str] = None
    sellerName: Optional[str] = None
    sellerGstin: Optional[str] = None
    returnAddress: Optional[str] = None

    @field_validator("shop")
    @classmethod
    def validate_shop(cls, v):
        v = v.strip().lower()
        if not v.endswith(".myshopify.com"):
            raise ValueError("shop must be a myshopify.com domain")
        return v


# Orders
class OrderRef(BaseModel):
    businessId: str
    shop: str


class OrderStatusUpdate(OrderRef):
    orderId: str
    status: str


class BulkOrderStatusUpdate(OrderRef):
    orderIds: List[str] = Field(..., min_length=1)
    status: str


class RevertOrderRequest(OrderRef):
    orderId: str


class OrderTagsUpdate(OrderRef):
    orderId: str
    tag: str
    action: str


class PickupReadyRequest(OrderRef):
    orderId: str
    assignedUpcIds: List[str] = Field(default_factory=list)


class SlipsRequest(OrderRef):
    orderIds: List[str] = Field(..., min_length=1)


class VendorPickListRequest(OrderRef):
    vendor: str
    poNumber: str
    orderIds: List[str] = Field(..., min_length=1)


# Business products
class ProductCreate(BaseModel):
    businessId: str
    sku: str
    name: str
    weight: float = Field(..., gt=0)
    category: str
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    status: Optional[str] = None

    @field_validator("sku")
    @classmethod
    def normalize_sku(cls, v):
        return _upper_sku(v)


class ProductUpdate(BaseModel):
    businessId: str
    name: Optional[str] = None
    weight: Optional[float] = Field(None, gt=0)
    category: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    status: Optional[str] = None


class VariantMappingRequest(OrderRef):
    storeProductId: str
    storeVariantId: str
    businessProductSku: Optional[str] = None


class StoreProductsSync(OrderRef):
    pass


# Parties
class PartyBase(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    code: Optional[str] = None
    contactPerson: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[dict[str, Any]] = None
    gstin: Optional[str] = None
    pan: Optional[str] = None
    bankDetails: Optional[dict[str, Any]] = None
    defaultPaymentTerms: Optional[str] = None
    notes: Optional[str] = None


class PartyCreate(PartyBase):
    businessId: str


class PartyUpdate(PartyBase):
    businessId: str


# Warehouse layout
class WarehouseCreate(BaseModel):
    businessId: str
    code: str
    name: str
    address: Optional[str] = None
    storageCapacity: Optional[int] = Field(None, ge=0)
    operationalHours: Optional[int] = Field(None, ge=0)
    defaultGSTstate: Optional[str] = None


class ZoneCreate(BaseModel):
    businessId: str
    warehouseId: str
    code: str
    name: str
    description: Optional[str] = None


class RackCreate(BaseModel):
    businessId: str
    zoneId: str
    name: str
    code: Optional[str] = None
    position: Optional[int] = None


class ShelfCreate(BaseModel):
    businessId: str
    rackId: str
    name: str
    code: Optional[str] = None
    position: Optional[int] = None
    capacity: Optional[int] = Field(None, ge=0)


class PutAwayBatch(BaseModel):
    businessId: str
    upcIds: List[str]
    warehouseId: str
    zoneId: str
    rackId: str
    shelfId: str


# Purchase orders
class PurchaseOrderItemIn(BaseModel):
    sku: str
    productName: str = Field(..., min_length=1)
    orderedQty: int = Field(..., gt=0)
    unitCost: float = Field(..., ge=0)

    @field_validator("sku")
    @classmethod
    def normalize_sku(cls, v):
        return _upper_sku(v)


class PurchaseOrderCreate(BaseModel):
    businessId: str
    supplierPartyId: str
    supplierName: str = Field(..., min_length=1)
    warehouseId: str
    warehouseName: Optional[str] = None
    expectedDate: date
    currency: Optional[str] = None
    notes: Optional[str] = None
    items: List[PurchaseOrderItemIn] = Field(..., min_length=1)


class PurchaseOrderUpdate(BaseModel):
    businessId: str
    status: Optional[PurchaseOrderStatus] = None
    supplierPartyId: Optional[str] = None
    supplierName: Optional[str] = None
    warehouseId: Optional[str] = None
    warehouseName: Optional[str] = None
    expectedDate: Optional[date] = None
    currency: Optional[str] = None
    notes: Optional[str] = None
    cancelReason: Optional[str] = None
    items: Optional[List[PurchaseOrderItemIn]] = None


# GRNs
class GRNItemIn(BaseModel):
    sku: str
    productName: str = Field(..., min_length=1)
    expectedQty: int = Field(..., ge=0)
    receivedQty: int = Field(..., ge=0)

    @field_validator("sku")
    @classmethod
    def normalize_sku(cls, v):
        return _upper_sku(v)


class GRNCreate(BaseModel):
    businessId: str
    poId: str
    warehouseId: str
    warehouseName: Optional[str] = None
    receivedBy: Optional[str] = None
    inspectedBy: Optional[str] = None
    notes: Optional[str] = None
    items: List[GRNItemIn] = Field(..., min_length=1)


class GRNItemUpdate(BaseModel):
    sku: str
    receivedQty: Optional[int] = Field(None, ge=0)
    acceptedQty: Optional[int] = Field(None, ge=0)
    rejectedQty: Optional[int] = Field(None, ge=0)
    rejectionReason: Optional[str] = None
    unitCost: Optional[float] = Field(None, ge=0)

    @field_validator("sku")
    @classmethod
    def normalize_sku(cls, v):
        return _upper_sku(v)


class GRNUpdate(BaseModel):
    businessId: str
    status: Optional[GRNStatus] = None
    notes: Optional[str] = None
    inspectedBy: Optional[str] = None
    items: Optional[List[GRNItemUpdate]] = None


# Integrations
class CourierApiKeyRequest(BaseModel):
    businessId: str
    courierName: str
    apiKey: str


class CourierLoginRequest(BaseModel):
    businessId: str
    email: str
    password: str


class BlueDartRequest(BaseModel):
    businessId: str
    customerCode: str
    loginId: str
    licenceKey: str


class CourierPriorityEntry(BaseModel):
    name: str
    mode: Optional[str] = None


class CourierPriorityRequest(BaseModel):
    businessId: str
    enabled: bool
    priorityList: List[CourierPriorityEntry] = Field(default_factory=list)


class InteraktKeyRequest(BaseModel):
    shop: str
    key: str
    value: str


class WhatsAppAccountRequest(BaseModel):
    shop: str
    phoneNumberId: str
    accessToken: str
    headerImageUrl: Optional[str] = None


class ActiveTemplateRequest(BaseModel):
    shop: str
    category: str
    templateId: Optional[str] = None


# Storefront checkout
class DraftSessionRequest(BaseModel):
    shop_domain: Optional[str] = None
    draft_order: Optional[dict[str, Any]] = None
    cart_token: Optional[str] = None
    clientNonce: Optional[str] = None


class SendOtpRequest(BaseModel):
    sessionId: Optional[str] = None
    phoneNumber: Optional[str] = None
    cartToken: Optional[str] = None
    clientNonce: Optional[str] = None


class VerifyOtpRequest(BaseModel):
    sessionId: Optional[str] = None
    otp: Optional[Union[str, int]] = None
    cartToken: Optional[str] = None
    clientNonce: Optional[str] = None


class CodOrderRequest(BaseModel):
    sessionId: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


# Customer self-service pages
class OrderNumberRequest(BaseModel):
    orderNumber: Optional[Union[str, int]] = None
    phoneNo: Optional[str] = None


class OrderIdRequest(BaseModel):
    orderId: Optional[str] = None


class ReturnRequest(BaseModel):
    orderId: Optional[str] = None
    selectedVariantIds: Optional[Any] = None
    booked_return_images: Optional[Any] = None
    booked_return_reason: Optional[Any] = None
