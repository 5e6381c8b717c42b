"""
Shared fixtures: an in-memory SQLite database, a seeded rate table and JWTs.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EXCHANGE_RATE_REFRESH_ENABLED"] = "false"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app import crud, currency, models, schemas
from app.config import ALGORITHM, SECRET_KEY
from app.database import Base, SessionLocal, engine
from app.main import app as marketplace_app

BUYER_ID = 1
OTHER_BUYER_ID = 2
ADMIN_ID = 99
SELLER_ID = 100
SECOND_SELLER_ID = 200


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def rates():
    currency.rate_table.replace({
        "USD": Decimal("1"),
        "NGN": Decimal("1500"),
        "GBP": Decimal("0.8"),
        "EUR": Decimal("0.9"),
    })
    yield currency.rate_table.rates
    currency.rate_table.clear()


@pytest.fixture
def client():
    return TestClient(marketplace_app)


def make_token(user_id: int, role: str = "user", email: str = None, name: str = None) -> str:
    claims = {"sub": str(user_id), "email": email or f"user{user_id}@example.com", "role": role}
    if name:
        claims["name"] = name
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def auth_header(user_id: int, role: str = "user") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


@pytest.fixture
def buyer():
    return schemas.BuyerSnapshot(userId=BUYER_ID, name="Ada Buyer", email="ada@example.com", phone="+2348000000000")


@pytest.fixture
def seller(db):
    return crud.create_seller(db, schemas.SellerCreate(id=SELLER_ID, storeName="Lagos Goods", email="store@example.com"))


@pytest.fixture
def second_seller(db):
    return crud.create_seller(db, schemas.SellerCreate(id=SECOND_SELLER_ID, storeName="London Wares", email="wares@example.com"))


@pytest.fixture
def make_product(db):
    def factory(seller_id=SELLER_ID, amount="100.00", currency_code="USD", stock=5, name="Widget"):
        return crud.create_product(db, seller_id, schemas.ProductCreate(
            name=name,
            price=schemas.Price(amount=Decimal(amount), currency=currency_code),
            stock=stock,
        ))
    return factory


def get_wallet(db, seller_id: int, currency_code: str) -> models.SellerWallet:
    db.expire_all()
    return db.query(models.SellerWallet).filter(
        models.SellerWallet.seller_id == seller_id,
        models.SellerWallet.currency == currency_code,
    ).one()


def get_stock(db, product_id: int) -> int:
    db.expire_all()
    return db.query(models.Product).filter(models.Product.id == product_id).one().stock
