from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import CITEXT, INET
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntId = BigInteger().with_variant(Integer(), 'sqlite')
CaseInsensitiveText = CITEXT().with_variant(Text(), 'sqlite')
IpAddress = INET().with_variant(Text(), 'sqlite')


class Base(DeclarativeBase):
    pass


class SystemRole(str, Enum):
    ADMIN = 'admin'


class StoreRole(str, Enum):
    FOUNDER = 'founder'
    MANAGER = 'manager'
    EMPLOYEE = 'employee'


class ProductStatus(str, Enum):
    ACTIVE = 'active'
    DISCONTINUED = 'discontinued'


class OrderSourceType(str, Enum):
    FRONTEND = 'frontend'
    ADMIN_PROXY = 'admin_proxy'


class OrderStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'


class OrderItemStatus(str, Enum):
    WAITING = 'waiting'
    PARTIAL = 'partial'
    SHIPPED = 'shipped'
    OUT_OF_STOCK = 'out_of_stock'
    DISCONTINUED = 'discontinued'


class SalesNoteStatus(str, Enum):
    DRAFT = 'draft'
    SHIPPED = 'shipped'
    RECEIVED = 'received'


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [member.value for member in members])


class Store(Base):
    __tablename__ = 'stores'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    code: Mapped[str | None] = mapped_column(Text, unique=True)
    brand: Mapped[str | None] = mapped_column(Text, index=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Principal(Base):
    __tablename__ = 'principals'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    username: Mapped[str] = mapped_column(CaseInsensitiveText, nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    system_role: Mapped[SystemRole | None] = mapped_column(_enum(SystemRole, 'system_role'))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class StoreMember(Base):
    __tablename__ = 'store_members'

    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), primary_key=True)
    principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id', ondelete='CASCADE'), primary_key=True)
    role: Mapped[StoreRole] = mapped_column(
        _enum(StoreRole, 'store_role'), nullable=False, default=StoreRole.EMPLOYEE, server_default='employee'
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    sku: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    base_wholesale_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    base_retail_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    status: Mapped[ProductStatus] = mapped_column(
        _enum(ProductStatus, 'product_status'), nullable=False, default=ProductStatus.ACTIVE, server_default='active'
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ProductVariant(Base):
    __tablename__ = 'product_variants'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    wholesale_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    retail_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    status: Mapped[ProductStatus] = mapped_column(
        _enum(ProductStatus, 'product_status'), nullable=False, default=ProductStatus.ACTIVE, server_default='active'
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BrandPrice(Base):
    __tablename__ = 'brand_prices'
    __table_args__ = (
        UniqueConstraint('brand', 'product_id', 'variant_id', name='brand_prices_brand_product_variant_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    brand: Mapped[str] = mapped_column(Text, nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id', ondelete='CASCADE'), nullable=False)
    variant_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('product_variants.id', ondelete='CASCADE'))
    wholesale_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    retail_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Order(Base):
    __tablename__ = 'orders'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False, index=True)
    created_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    source_type: Mapped[OrderSourceType] = mapped_column(
        _enum(OrderSourceType, 'order_source_type'),
        nullable=False,
        default=OrderSourceType.FRONTEND,
        server_default='frontend',
    )
    status: Mapped[OrderStatus] = mapped_column(
        _enum(OrderStatus, 'order_status'), nullable=False, default=OrderStatus.PENDING, server_default='pending'
    )
    notes: Mapped[str | None] = mapped_column(Text)
    fully_shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class OrderItem(Base):
    __tablename__ = 'order_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='order_items_quantity_positive'),
        CheckConstraint('shipped_quantity >= 0', name='order_items_shipped_non_negative'),
        CheckConstraint('shipped_quantity <= quantity', name='order_items_shipped_within_quantity'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    variant_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('product_variants.id'))
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    shipped_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    status: Mapped[OrderItemStatus] = mapped_column(
        _enum(OrderItemStatus, 'order_item_status'),
        nullable=False,
        default=OrderItemStatus.WAITING,
        server_default='waiting',
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ShippingPoolEntry(Base):
    __tablename__ = 'shipping_pool'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='shipping_pool_quantity_positive'),
        Index('shipping_pool_store_created_idx', 'store_id', 'created_at'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    order_item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('order_items.id', ondelete='CASCADE'), nullable=False, index=True
    )
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SalesNote(Base):
    __tablename__ = 'sales_notes'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False, index=True)
    created_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    status: Mapped[SalesNoteStatus] = mapped_column(
        _enum(SalesNoteStatus, 'sales_note_status'),
        nullable=False,
        default=SalesNoteStatus.DRAFT,
        server_default='draft',
    )
    notes: Mapped[str | None] = mapped_column(Text)
    access_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    received_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SalesNoteItem(Base):
    __tablename__ = 'sales_note_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='sales_note_items_quantity_positive'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    sales_note_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('sales_notes.id', ondelete='CASCADE'), nullable=False, index=True
    )
    order_item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('order_items.id'), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    actor_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    old_value: Mapped[dict | None] = mapped_column(JSON)
    new_value: Mapped[dict | None] = mapped_column(JSON)
    store_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='SET NULL'))
    ip: Mapped[str | None] = mapped_column(IpAddress)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Notification(Base):
    __tablename__ = 'notifications'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id', ondelete='CASCADE'), nullable=False)
    store_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'))
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(Text)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(IpAddress)
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
