import mongomock
import pytest
from fastapi.testclient import TestClient

from database import Database
from main import app
from schemas import PaymentBill, Product, ShippingAddress, User


@pytest.fixture
def db():
    return Database(mongomock.MongoClient()["bookstore_test"])


@pytest.fixture
def client(db):
    app.state.db = db
    with TestClient(app) as c:
        yield c
    app.state.db = None


@pytest.fixture
def make_user(db):
    def _make(username="reader", email=None):
        return db.create_document("user", User(username=username, email=email or f"{username}@example.com"))
    return _make


@pytest.fixture
def make_product(db):
    def _make(name="Dune", price=30.0, stock=10, image="/uploads/dune.jpg"):
        return db.create_document("product", Product(name=name, price=price, count_in_stock=stock, image=image))
    return _make


@pytest.fixture
def make_bill(db):
    def _make(amount="126.50"):
        return db.create_document("paymentbill", PaymentBill(
            sender_name="John Doe",
            sender_bank="ABC Bank",
            sender_account="1234567890",
            receiver_name="Jane Smith",
            receiver_bank="XYZ Bank",
            receiver_account="0987654321",
            date="2024-10-17",
            amount=amount,
        ))
    return _make


@pytest.fixture
def address():
    return ShippingAddress(
        name="Viet Anh",
        address="123 Main Street",
        city="HCM",
        postal_code="70000",
        country="VN",
        phone_number="0123456789",
    )
