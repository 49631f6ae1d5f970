import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from storefront.core.status import OrderStatus, OutboxStatus
from storefront.data.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _status_enum(enum_cls, name):
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


class Product(Base):
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Address(Base):
    __tablename__ = "addresses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    recipient_name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=False)
    street = Column(String(255), nullable=False)
    city = Column(String(120), nullable=False)
    province = Column(String(120))
    postal_code = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_cart_items_user_product"),)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number = Column(String(64), nullable=False, unique=True)
    user_id = Column(Uuid, nullable=False, index=True)
    status = Column(_status_enum(OrderStatus, "order_status"), nullable=False, default=OrderStatus.PENDING)
    # Address row may change or disappear later, the snapshot does not.
    address_id = Column(Uuid)
    address_snapshot = Column(JSON)
    subtotal_price = Column(Numeric(12, 2), nullable=False)
    shipping_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)
    note = Column(Text)
    receipt_no = Column(String(64))
    placed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("idx_orders_user_status", "user_id", "status"),)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    # Not a foreign key: the product may be edited or removed after the order is placed.
    product_id = Column(Uuid, nullable=False)
    name_snapshot = Column(String(255), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    aggregate_type = Column(String(64), nullable=False)
    aggregate_id = Column(Uuid, nullable=False)
    event_type = Column(String(64), nullable=False)
    payload = Column(LargeBinary, nullable=False)
    status = Column(_status_enum(OutboxStatus, "outbox_status"), nullable=False, default=OutboxStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    sent_at = Column(DateTime(timezone=True))
    # Set while a dispatcher holds the event; an expired claim is picked up again.
    claimed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_outbox_status_created", "status", "created_at"),
        Index("idx_outbox_aggregate", "aggregate_type", "aggregate_id"),
    )
