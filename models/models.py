# File: models.py
from sqlalchemy import Column, Integer, String, DateTime, Date, Float, Boolean, Text, ForeignKey, JSON, CheckConstraint
from sqlalchemy.orm import DeclarativeBase, relationship
from datetime import datetime
import enum

class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass

class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    SHOPKEEPER = "shopkeeper"
    DELIVERY_AGENT = "delivery_agent"
    FARMER = "farmer"
    ADMIN = "admin"

class ShopStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"

class OrderStatus(str, enum.Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    PREPARING = "PREPARING"
    READY = "READY"
    DELIVERED = "DELIVERED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class DeliveryStatus(str, enum.Enum):
    UNASSIGNED = "UNASSIGNED"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

class DeliveryAgentStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"

class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    WALLET = "wallet"

class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

class NotificationType(str, enum.Enum):
    ORDER_UPDATED = "order_updated"
    DELIVERY_AVAILABLE = "delivery_available"
    DELIVERY_UPDATED = "delivery_updated"

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, index=True)
    phone = Column(String(20))
    role = Column(String(20), default=UserRole.CUSTOMER.value, nullable=False)
    address = Column(Text)
    latitude = Column(Float)
    longitude = Column(Float)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    orders = relationship("Order", back_populates="customer")
    addresses = relationship("CustomerAddress", back_populates="user")
    shops = relationship("Shop", back_populates="owner")

class CustomerAddress(Base):
    __tablename__ = "customer_addresses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    label = Column(String(50), nullable=False)  # Home, Office, etc.
    address_line1 = Column(String(200), nullable=False)
    address_line2 = Column(String(200))
    city = Column(String(50), nullable=False)
    state = Column(String(50), nullable=False)
    pincode = Column(String(10), nullable=False)
    phone = Column(String(20), nullable=False)
    is_default = Column(Boolean, default=False)
    latitude = Column(Float)
    longitude = Column(Float)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="addresses")

    def formatted(self) -> str:
        address = f"{self.address_line1}"
        if self.address_line2:
            address += f", {self.address_line2}"
        address += f", {self.city}, {self.state} - {self.pincode}"
        return address

class Shop(Base):
    __tablename__ = "shops"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    address = Column(Text, nullable=False)
    phone = Column(String(20))
    latitude = Column(Float)
    longitude = Column(Float)
    status = Column(String(20), default=ShopStatus.PENDING.value, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    owner = relationship("User", back_populates="shops")
    products = relationship("Product", back_populates="shop")
    orders = relationship("Order", back_populates="shop")

class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)  # stock on hand
    category = Column(String(50))
    expiry_date = Column(Date)
    mfg_date = Column(Date)
    image_url = Column(String(255))
    is_active = Column(Boolean, default=True)
    version = Column(Integer, nullable=False, default=1)  # bumped on every stock change
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    shop = relationship("Shop", back_populates="products")
    order_items = relationship("OrderItem", back_populates="product")

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False, index=True)

    # Order details
    subtotal = Column(Float, nullable=False)
    delivery_charge = Column(Float, default=0.0)
    total_amount = Column(Float, nullable=False)
    notes = Column(Text)
    request_type = Column(String(30), default="ORDER_REQUEST")

    # Delivery details
    delivery_address = Column(Text, nullable=False)
    delivery_phone = Column(String(20), nullable=False)
    delivery_latitude = Column(Float)
    delivery_longitude = Column(Float)

    # Status
    status = Column(String(20), default=OrderStatus.PENDING_APPROVAL.value, nullable=False, index=True)
    status_history = Column(JSON)  # Store status change history
    rejection_reason = Column(Text)
    cancellation_reason = Column(Text)
    cancelled_at = Column(DateTime)
    cancelled_by = Column(Integer)

    # Payment
    payment_method = Column(String(20), default=PaymentMethod.CASH.value)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customer = relationship("User", back_populates="orders")
    shop = relationship("Shop", back_populates="orders")
    order_items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    delivery = relationship("Delivery", back_populates="order", uselist=False)

class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Float, nullable=False)  # price at order time
    approval_status = Column(String(20), default=ApprovalStatus.PENDING.value, nullable=False)
    reserved_quantity = Column(Integer, nullable=False, default=0)  # units deducted at acceptance
    rejection_reason = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    order = relationship("Order", back_populates="order_items")
    product = relationship("Product", back_populates="order_items")

class DeliveryAgent(Base):
    __tablename__ = "delivery_agents"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, index=True)
    phone = Column(String(20), nullable=False)
    vehicle_type = Column(String(30))
    status = Column(String(20), default=DeliveryAgentStatus.PENDING.value, nullable=False)
    is_available = Column(Boolean, default=False, nullable=False)
    rating = Column(Float, default=0.0)
    total_deliveries = Column(Integer, default=0, nullable=False)
    current_latitude = Column(Float)
    current_longitude = Column(Float)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    deliveries = relationship("Delivery", back_populates="delivery_agent")

class Delivery(Base):
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    delivery_agent_id = Column(Integer, ForeignKey("delivery_agents.id"), nullable=True, index=True)
    status = Column(String(20), default=DeliveryStatus.UNASSIGNED.value, nullable=False, index=True)

    # Pickup (shop) and drop-off (customer)
    pickup_address = Column(Text)
    pickup_latitude = Column(Float)
    pickup_longitude = Column(Float)
    delivery_address = Column(Text, nullable=False)
    delivery_latitude = Column(Float)
    delivery_longitude = Column(Float)
    delivery_phone = Column(String(20))
    notes = Column(Text)

    # Proof of delivery
    delivery_photo_url = Column(String(500))
    delivery_photo_uploaded_at = Column(DateTime)

    # Timestamps
    assigned_at = Column(DateTime)
    picked_up_at = Column(DateTime)
    in_transit_at = Column(DateTime)
    delivered_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    order = relationship("Order", back_populates="delivery")
    delivery_agent = relationship("DeliveryAgent", back_populates="deliveries")

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    # NULL recipient_id = every principal with recipient_role
    recipient_id = Column(Integer, nullable=True, index=True)
    recipient_role = Column(String(20), nullable=False)

    # Notification details
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(String(50), nullable=False)
    data = Column(JSON)  # Additional data for deep linking

    # Status
    is_read = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
