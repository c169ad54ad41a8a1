from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Any, Dict
from datetime import datetime, date

from models.models import (
    OrderStatus, ApprovalStatus, DeliveryStatus, PaymentMethod
)

# ========== ADDRESS SCHEMAS ==========

class ManualAddress(BaseModel):
    """Address typed in at checkout. Every field except line 2 is mandatory."""
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    phone: Optional[str] = None

class AddressCreate(ManualAddress):
    label: Optional[str] = "Home"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_default: bool = False

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "label": "Home",
                "address_line1": "12 MG Road",
                "city": "Pune",
                "state": "Maharashtra",
                "pincode": "411001",
                "phone": "9876543210"
            }
        }
    )

class AddressResponse(BaseModel):
    id: int
    user_id: int
    label: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    pincode: str
    phone: str
    is_default: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)

# ========== SHOP / PRODUCT SCHEMAS ==========

class ShopResponse(BaseModel):
    id: int
    owner_id: int
    name: str
    address: str
    phone: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: str
    distance_km: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)

class ProductResponse(BaseModel):
    id: int
    shop_id: int
    name: str
    price: float
    quantity: int
    category: Optional[str] = None
    expiry_date: Optional[date] = None
    mfg_date: Optional[date] = None
    image_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

# ========== ORDER SCHEMAS ==========

class OrderItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)

class OrderCreate(BaseModel):
    customer_id: Optional[int] = None
    shop_id: int
    items: List[OrderItemCreate] = []
    address_id: Optional[int] = None
    delivery_address: Optional[ManualAddress] = None
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "shop_id": 1,
                "items": [{"product_id": 3, "quantity": 2}],
                "address_id": 7,
                "payment_method": "upi"
            }
        }
    )

class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None

class OrderCancel(BaseModel):
    cancellation_reason: Optional[str] = None

class ItemApprovalUpdate(BaseModel):
    approval_status: ApprovalStatus
    rejection_reason: Optional[str] = None

class OrderItemResponse(BaseModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    price: float
    approval_status: str
    reserved_quantity: int = 0
    rejection_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class OrderResponse(BaseModel):
    id: int
    customer_id: int
    shop_id: int
    subtotal: float
    delivery_charge: float
    total_amount: float
    delivery_address: str
    delivery_phone: str
    delivery_latitude: Optional[float] = None
    delivery_longitude: Optional[float] = None
    payment_method: str
    payment_status: str
    notes: Optional[str] = None
    status: str
    request_type: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    status_history: Optional[List[Dict[str, Any]]] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    order_items: List[OrderItemResponse] = []

    model_config = ConfigDict(from_attributes=True)

# ========== DELIVERY SCHEMAS ==========

class DeliveryResponse(BaseModel):
    id: int
    order_id: int
    delivery_agent_id: Optional[int] = None
    status: str
    pickup_address: Optional[str] = None
    pickup_latitude: Optional[float] = None
    pickup_longitude: Optional[float] = None
    delivery_address: str
    delivery_latitude: Optional[float] = None
    delivery_longitude: Optional[float] = None
    delivery_phone: Optional[str] = None
    notes: Optional[str] = None
    delivery_photo_url: Optional[str] = None
    delivery_photo_uploaded_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    in_transit_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class OrderAcceptResponse(BaseModel):
    message: str
    created: bool
    order: OrderResponse
    delivery: DeliveryResponse

class OrderTrackingResponse(BaseModel):
    order_id: int
    order_status: str
    delivery: Optional[DeliveryResponse] = None
    poll_interval_seconds: int

class DeliveryListResponse(BaseModel):
    deliveries: List[DeliveryResponse]
    poll_interval_seconds: int

class DeliveryAcceptRequest(BaseModel):
    delivery_id: int = Field(..., alias="deliveryId")
    delivery_agent_id: int = Field(..., alias="deliveryAgentId")

    model_config = ConfigDict(populate_by_name=True)

class DeliveryUpdateRequest(BaseModel):
    delivery_id: int = Field(..., alias="deliveryId")
    status: Optional[DeliveryStatus] = None
    delivery_photo_url: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

# ========== DELIVERY AGENT SCHEMAS ==========

class AvailabilityUpdate(BaseModel):
    delivery_agent_id: int = Field(..., alias="deliveryAgentId")
    is_available: bool = Field(..., alias="isAvailable")

    model_config = ConfigDict(populate_by_name=True)

class DeliveryAgentResponse(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    phone: str
    vehicle_type: Optional[str] = None
    status: str
    is_available: bool
    rating: Optional[float] = None
    total_deliveries: int

    model_config = ConfigDict(from_attributes=True)

# ========== NOTIFICATION SCHEMAS ==========

class NotificationResponse(BaseModel):
    id: int
    recipient_id: Optional[int] = None
    recipient_role: str
    title: str
    message: str
    notification_type: str
    data: Optional[Dict[str, Any]] = None
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

# ========== ERROR RESPONSE SCHEMAS ==========

class ErrorResponse(BaseModel):
    detail: str
