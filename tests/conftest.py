"""
Shared fixtures for the order lifecycle tests.

Provides:
- engine / session_factory / db: fresh in-memory SQLite database per test
- factory: helpers to seed users, addresses, shops, products and riders
- world: a customer with an address and one shop with one product
- client: httpx AsyncClient against the FastAPI app, get_db overridden
- auth_headers: bearer headers for a user
"""
import os
import uuid

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.pop("REDIS_URL", None)

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.security import create_access_token
from app.database import Base, get_db, import_models
from app.models.address import Address
from app.models.rider import DeliveryBoy
from app.models.shop import Shop, ShopProduct, ProductPriceOption
from app.models.user import User, UserRole
from app.schemas.order import OrderCreate, OrderItemCreate
from app.services import cache_service
from app.services.cache_service import CacheService, InMemoryCache
from app.services.notification_service import NotificationService
from app.services.ownership_service import ActorContext


import_models()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def fresh_cache():
    """Every test starts with an empty in-memory cache."""
    cache_service._cache_instance = CacheService(InMemoryCache())
    yield cache_service._cache_instance
    cache_service._cache_instance = None


@pytest.fixture
def notifier():
    return NotificationService()


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------

_phone_counter = 0


def _next_phone() -> str:
    global _phone_counter
    _phone_counter += 1
    return f"90000{_phone_counter:05d}"


class Factory:
    """Seeds rows through the session and commits each one."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def user(self, role: UserRole = UserRole.CUSTOMER, name: Optional[str] = None) -> User:
        return await self._save(User(
            name=name or f"{role.value.title()} User",
            phone=_next_phone(),
            role=role.value,
        ))

    async def address(self, user: User) -> Address:
        return await self._save(Address(
            user_id=user.id,
            address_line1="14 MG Road",
            city="Bengaluru",
            state="Karnataka",
            pincode="560001",
        ))

    async def shop(self, owner: Optional[User] = None, name: str = "Corner Kirana") -> Shop:
        owner = owner or await self.user(UserRole.SHOPKEEPER)
        return await self._save(Shop(owner_id=owner.id, name=name))

    async def product(
        self,
        shop_id: uuid.UUID,
        name: str = "Basmati Rice",
        stock: int = 10,
        price: str = "50.00",
        is_returnable: bool = True,
        return_period_days: Optional[int] = 7,
    ) -> ShopProduct:
        return await self._save(ShopProduct(
            shop_id=shop_id,
            name=name,
            price=Decimal(price),
            stock_quantity=stock,
            is_returnable=is_returnable,
            return_period_days=return_period_days,
        ))

    async def price_option(self, product_id: uuid.UUID, price: str, weight: str = "5", unit: str = "kg"):
        return await self._save(ProductPriceOption(
            shop_product_id=product_id,
            weight=Decimal(weight),
            unit=unit,
            price=Decimal(price),
        ))

    async def rider(self, shop_id: uuid.UUID, is_available: bool = True) -> DeliveryBoy:
        user = await self.user(UserRole.DELIVERY_BOY)
        suffix = user.phone[-5:]
        return await self._save(DeliveryBoy(
            user_id=user.id,
            shop_id=shop_id,
            vehicle_number=f"KA01AB{suffix}",
            license_number=f"DL-{suffix}",
            is_available=is_available,
        ))


@pytest.fixture
def factory(db):
    return Factory(db)


def actor_for(user: User) -> ActorContext:
    return ActorContext(user_id=user.id, role=user.role)


def rider_actor(rider: DeliveryBoy) -> ActorContext:
    return ActorContext(user_id=rider.user_id, role=UserRole.DELIVERY_BOY.value)


@dataclass
class World:
    """
    Seeded ids, kept as plain values.

    A failed service call rolls the session back, which expires every loaded
    instance; plain ids stay readable afterwards.
    """
    customer: User
    shopkeeper: User
    customer_id: uuid.UUID
    shopkeeper_id: uuid.UUID
    address_id: uuid.UUID
    shop_id: uuid.UUID
    product_id: uuid.UUID

    @property
    def customer_actor(self) -> ActorContext:
        return ActorContext(user_id=self.customer_id, role=UserRole.CUSTOMER.value)

    @property
    def shop_actor(self) -> ActorContext:
        return ActorContext(user_id=self.shopkeeper_id, role=UserRole.SHOPKEEPER.value)

    def checkout(self, *lines, payment_method: str = "COD") -> OrderCreate:
        """lines: (product_id, quantity) pairs; defaults to 3 of the world product."""
        lines = lines or ((self.product_id, 3),)
        return OrderCreate(
            address_id=self.address_id,
            items=[OrderItemCreate(shop_product_id=pid, quantity=q) for pid, q in lines],
            payment_method=payment_method,
        )


@pytest_asyncio.fixture
async def world(factory) -> World:
    customer = await factory.user(UserRole.CUSTOMER, name="Priya")
    address = await factory.address(customer)
    shopkeeper = await factory.user(UserRole.SHOPKEEPER, name="Rajesh")
    shop = await factory.shop(shopkeeper)
    product = await factory.product(shop.id, stock=10)
    return World(
        customer=customer,
        shopkeeper=shopkeeper,
        customer_id=customer.id,
        shopkeeper_id=shopkeeper.id,
        address_id=address.id,
        shop_id=shop.id,
        product_id=product.id,
    )


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory):
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    token = create_access_token(user.id, user.role)
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Workflow shortcuts
# ---------------------------------------------------------------------------

async def place_single_order(db: AsyncSession, world: World, *lines, payment_method: str = "COD"):
    from app.services.order_service import OrderService

    orders = await OrderService(db).place_order(
        world.customer_actor, world.checkout(*lines, payment_method=payment_method)
    )
    assert len(orders) == 1
    return orders[0]


async def deliver_order(db: AsyncSession, world: World, factory: Factory, *lines):
    """Place, accept (auto-assigning the only rider) and deliver an order."""
    from app.services.order_service import OrderService
    from app.services.rider_assignment_service import RiderAssignmentService

    rider = await factory.rider(world.shop_id)
    order = await place_single_order(db, world, *lines)
    order = await OrderService(db).accept_order(world.shop_actor, order.id)
    return await RiderAssignmentService(db).mark_delivered(
        rider_actor(rider), order.id, order.delivery_otp
    )
