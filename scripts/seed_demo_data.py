"""
Demo Data Seed Script
---------------------
1. Create tables if missing
2. Create a customer, a shopkeeper with one shop and two riders, and an admin
3. List a handful of grocery products with stock
4. Print bearer tokens for every demo user

Usage:
    DATABASE_URL=sqlite+aiosqlite:///ezgrocer.db SECRET_KEY=dev python -m scripts.seed_demo_data
"""
import asyncio
from decimal import Decimal

from sqlalchemy import select

from app.core.security import create_access_token
from app.database import get_db_session, init_db
from app.models.address import Address
from app.models.rider import DeliveryBoy
from app.models.shop import Shop, ShopProduct, ProductPriceOption
from app.models.user import User, UserRole


DEMO_USERS = [
    {"name": "Priya Sharma", "phone": "9876543001", "role": UserRole.CUSTOMER},
    {"name": "Rajesh Kirana", "phone": "9876543002", "role": UserRole.SHOPKEEPER},
    {"name": "Amit Rider", "phone": "9876543003", "role": UserRole.DELIVERY_BOY},
    {"name": "Vijay Rider", "phone": "9876543004", "role": UserRole.DELIVERY_BOY},
    {"name": "Ops Admin", "phone": "9876543000", "role": UserRole.ADMIN},
]

DEMO_PRODUCTS = [
    # name, brand, price, weight, unit, stock, returnable, return days
    ("Toned Milk", "Amul", Decimal("28.00"), Decimal("500"), "ml", 50, False, None),
    ("Basmati Rice", "India Gate", Decimal("120.00"), Decimal("1"), "kg", 30, True, 7),
    ("Sunflower Oil", "Fortune", Decimal("165.00"), Decimal("1"), "l", 20, True, 3),
    ("Whole Wheat Atta", "Aashirvaad", Decimal("245.00"), Decimal("5"), "kg", 15, True, None),
    ("Bananas", None, Decimal("60.00"), Decimal("12"), "pcs", 40, False, None),
]


async def seed():
    print("=" * 60)
    print("EZ GROCER DEMO SEED")
    print("=" * 60)

    await init_db()

    async with get_db_session() as db:
        existing = (await db.execute(
            select(User).where(User.phone == DEMO_USERS[0]["phone"])
        )).scalar_one_or_none()
        if existing:
            print("Demo data already present, printing tokens only.")
        else:
            print("\n1. CREATING USERS...")
            users = {}
            for entry in DEMO_USERS:
                user = User(name=entry["name"], phone=entry["phone"], role=entry["role"].value)
                db.add(user)
                users[entry["phone"]] = user
                print(f"   {entry['role'].value:<13} {entry['name']}")
            await db.flush()

            customer = users["9876543001"]
            db.add(Address(
                user_id=customer.id,
                label="HOME",
                address_line1="14 MG Road",
                city="Bengaluru",
                state="Karnataka",
                pincode="560001",
                is_default=True,
            ))

            print("\n2. CREATING SHOP...")
            shop = Shop(owner_id=users["9876543002"].id, name="Rajesh Kirana Store", pincode="560001")
            db.add(shop)
            await db.flush()
            print(f"   {shop.name} ({shop.id})")

            print("\n3. CREATING RIDERS...")
            for i, phone in enumerate(("9876543003", "9876543004"), start=1):
                db.add(DeliveryBoy(
                    user_id=users[phone].id,
                    shop_id=shop.id,
                    vehicle_number=f"KA01AB{1000 + i}",
                    license_number=f"DL-KA-{2020000 + i}",
                ))
                print(f"   {users[phone].name}")

            print("\n4. LISTING PRODUCTS...")
            for name, brand, price, weight, unit, stock, returnable, days in DEMO_PRODUCTS:
                product = ShopProduct(
                    shop_id=shop.id,
                    name=name,
                    brand=brand,
                    price=price,
                    weight=weight,
                    unit=unit,
                    stock_quantity=stock,
                    is_returnable=returnable,
                    return_period_days=days,
                )
                if name == "Basmati Rice":
                    product.price_options = [
                        ProductPriceOption(weight=Decimal("5"), unit="kg", price=Decimal("560.00"), mrp=Decimal("600.00")),
                    ]
                db.add(product)
                print(f"   {name:<20} stock={stock:<4} price={price}")

    print("\n5. TOKENS")
    async with get_db_session() as db:
        result = await db.execute(
            select(User).where(User.phone.in_([u["phone"] for u in DEMO_USERS]))
        )
        for user in result.scalars().all():
            token = create_access_token(user.id, user.role)
            print(f"   {user.role:<13} {user.name}: {token}")

    print("\nDone.")


if __name__ == "__main__":
    asyncio.run(seed())
