import itertools
from datetime import datetime
from decimal import Decimal

import mongomock
import pytest
from fastapi.testclient import TestClient

from main import app, get_now, get_storage
from schemas import BudgetWithCategory, TransactionWithCategory
from storage import MemStorage, MongoStorage, resolve_category

NOW = datetime(2024, 6, 15, 12, 0, 0)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def categories():
    return MemStorage().list_categories()


@pytest.fixture
def make_tx(categories):
    """Build a joined transaction the way storage listings return them."""
    ids = itertools.count(1)

    def _make(amount, type="expense", date=NOW, category_id=1):
        return TransactionWithCategory(
            id=next(ids),
            description=f"{type} {amount}",
            amount=Decimal(amount),
            date=date,
            category_id=category_id,
            type=type,
            created_at=date,
            category=resolve_category(categories, category_id),
        )

    return _make


@pytest.fixture
def make_budget(categories):
    ids = itertools.count(1)

    def _make(amount, category_id=1, month=NOW.month, year=NOW.year, resolved=True):
        return BudgetWithCategory(
            id=next(ids),
            category_id=category_id,
            amount=Decimal(amount),
            month=month,
            year=year,
            created_at=NOW,
            category=resolve_category(categories, category_id) if resolved else None,
        )

    return _make


@pytest.fixture(params=["memory", "mongodb"])
def storage(request):
    if request.param == "memory":
        store = MemStorage()
    else:
        store = MongoStorage(mongomock.MongoClient()["finance-tracker-test"])
        store.initialize()
    yield store
    store.close()


@pytest.fixture
def mem_storage():
    return MemStorage()


@pytest.fixture
def client(mem_storage):
    app.dependency_overrides[get_storage] = lambda: mem_storage
    app.dependency_overrides[get_now] = lambda: NOW
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
