"""Contract tests run against both storage backends."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal

import mongomock
import pytest

import database
from schemas import BudgetCreate, BudgetUpdate, CategoryCreate, TransactionCreate, TransactionUpdate, UserCreate
from storage import DEFAULT_CATEGORIES, DuplicateRecordError, MemStorage, MongoStorage, verify_password


def tx_data(**overrides) -> TransactionCreate:
    data = {
        "description": "Groceries",
        "amount": "42.50",
        "date": datetime(2024, 6, 10, 9, 30),
        "category_id": 1,
        "type": "expense",
    }
    data.update(overrides)
    return TransactionCreate(**data)


def budget_data(**overrides) -> BudgetCreate:
    data = {"category_id": 1, "amount": "300", "month": 6, "year": 2024}
    data.update(overrides)
    return BudgetCreate(**data)


class TestCategories:
    def test_defaults_are_seeded_in_order(self, storage) -> None:
        categories = storage.list_categories()

        assert [c.id for c in categories] == list(range(1, 9))
        assert [c.name for c in categories] == [c.name for c in DEFAULT_CATEGORIES]

    def test_initialize_is_idempotent(self, storage) -> None:
        storage.initialize()
        storage.initialize()

        assert len(storage.list_categories()) == 8

    def test_create_assigns_next_id(self, storage) -> None:
        category = storage.create_category(CategoryCreate(name="Travel", color="#123456", icon="plane"))

        assert category.id == 9
        assert storage.get_category(9) == category

    def test_duplicate_name_is_rejected(self, storage) -> None:
        with pytest.raises(DuplicateRecordError):
            storage.create_category(CategoryCreate(name="Shopping", color="#000000", icon="bag"))

    def test_missing_category(self, storage) -> None:
        assert storage.get_category(404) is None


class TestTransactions:
    def test_create_then_get_round_trips(self, storage) -> None:
        data = tx_data()

        created = storage.create_transaction(data)
        fetched = storage.get_transaction(created.id)

        assert fetched == created
        assert fetched.id is not None
        assert fetched.created_at is not None
        assert fetched.model_dump(exclude={"id", "created_at"}) == data.model_dump()
        assert fetched.amount == Decimal("42.50")

    def test_ids_are_not_reused_after_delete(self, storage) -> None:
        first = storage.create_transaction(tx_data())
        second = storage.create_transaction(tx_data())
        assert storage.delete_transaction(second.id)

        third = storage.create_transaction(tx_data())

        assert (first.id, second.id, third.id) == (1, 2, 3)

    def test_update_merges_only_given_fields(self, storage) -> None:
        created = storage.create_transaction(tx_data())

        updated = storage.update_transaction(created.id, TransactionUpdate(amount="10", description="Market"))

        assert updated.amount == Decimal("10.00")
        assert updated.description == "Market"
        assert updated.date == created.date
        assert updated.type == created.type
        assert updated.created_at == created.created_at
        assert storage.get_transaction(created.id) == updated

    def test_update_can_clear_category(self, storage) -> None:
        created = storage.create_transaction(tx_data(category_id=3))

        updated = storage.update_transaction(created.id, TransactionUpdate(category_id=None))

        assert updated.category_id is None
        assert updated.description == created.description

    def test_empty_update_returns_record(self, storage) -> None:
        created = storage.create_transaction(tx_data())

        assert storage.update_transaction(created.id, TransactionUpdate()) == created

    def test_update_missing_returns_none(self, storage) -> None:
        assert storage.update_transaction(99, TransactionUpdate(description="x")) is None

    def test_delete_reports_whether_removed(self, storage) -> None:
        created = storage.create_transaction(tx_data())

        assert storage.delete_transaction(created.id) is True
        assert storage.delete_transaction(created.id) is False
        assert storage.get_transaction(created.id) is None

    def test_listing_is_newest_first_with_category(self, storage) -> None:
        storage.create_transaction(tx_data(date=datetime(2024, 6, 1), category_id=2))
        storage.create_transaction(tx_data(date=datetime(2024, 6, 20), category_id=3))
        storage.create_transaction(tx_data(date=datetime(2024, 6, 1), category_id=4))

        listed = storage.list_transactions()

        assert [t.id for t in listed] == [2, 3, 1]
        assert [t.category.name for t in listed] == ["Shopping", "Entertainment", "Transportation"]

    def test_unresolved_category_falls_back_to_first(self, storage) -> None:
        storage.create_transaction(tx_data(category_id=999))
        storage.create_transaction(tx_data(category_id=None))

        listed = storage.list_transactions()

        assert all(t.category.id == 1 for t in listed)
        assert {t.category_id for t in listed} == {999, None}

    def test_date_range_is_inclusive(self, storage) -> None:
        start, end = datetime(2024, 6, 1), datetime(2024, 6, 30, 23, 59, 59)
        storage.create_transaction(tx_data(date=datetime(2024, 5, 31, 23, 59)))
        on_start = storage.create_transaction(tx_data(date=start))
        inside = storage.create_transaction(tx_data(date=datetime(2024, 6, 15)))
        on_end = storage.create_transaction(tx_data(date=end))
        storage.create_transaction(tx_data(date=datetime(2024, 7, 1)))

        listed = storage.list_transactions_by_date_range(start, end)

        assert [t.id for t in listed] == [on_end.id, inside.id, on_start.id]

    def test_by_category(self, storage) -> None:
        storage.create_transaction(tx_data(category_id=2))
        wanted = storage.create_transaction(tx_data(category_id=5))

        listed = storage.list_transactions_by_category(5)

        assert [t.id for t in listed] == [wanted.id]
        assert listed[0].category.name == "Bills & Utilities"


class TestBudgets:
    def test_create_get_and_find(self, storage) -> None:
        created = storage.create_budget(budget_data())

        assert storage.get_budget(created.id) == created
        assert storage.find_budget(1, 6, 2024) == created
        assert storage.find_budget(1, 7, 2024) is None
        assert created.amount == Decimal("300.00")

    def test_one_budget_per_category_and_period(self, storage) -> None:
        storage.create_budget(budget_data())

        with pytest.raises(DuplicateRecordError):
            storage.create_budget(budget_data(amount="50"))

        storage.create_budget(budget_data(month=7))
        assert len(storage.list_budgets()) == 2

    def test_update_into_taken_period_is_rejected(self, storage) -> None:
        storage.create_budget(budget_data(month=6))
        july = storage.create_budget(budget_data(month=7))

        with pytest.raises(DuplicateRecordError):
            storage.update_budget(july.id, BudgetUpdate(month=6))

        assert storage.get_budget(july.id).month == 7

    def test_update_merges_fields(self, storage) -> None:
        created = storage.create_budget(budget_data())

        updated = storage.update_budget(created.id, BudgetUpdate(amount="450.5"))

        assert updated.amount == Decimal("450.50")
        assert updated.month == 6
        assert updated.created_at == created.created_at

    def test_update_and_delete_missing(self, storage) -> None:
        assert storage.update_budget(7, BudgetUpdate(amount="1")) is None
        assert storage.delete_budget(7) is False

    def test_listing_order_and_category(self, storage) -> None:
        storage.create_budget(budget_data(category_id=2, month=1, year=2024))
        storage.create_budget(budget_data(category_id=3, month=12, year=2023))
        storage.create_budget(budget_data(category_id=4, month=5, year=2024))

        listed = storage.list_budgets()

        assert [(b.year, b.month) for b in listed] == [(2024, 5), (2024, 1), (2023, 12)]
        assert listed[0].category.name == "Entertainment"


class TestUsers:
    def test_password_is_hashed(self, storage) -> None:
        user = storage.create_user(UserCreate(username="sam", password="s3cret-pass"))

        assert user.password_hash != "s3cret-pass"
        assert verify_password("s3cret-pass", user.password_hash)
        assert storage.get_user(user.id) == user
        assert storage.get_user_by_username("sam") == user

    def test_username_is_unique(self, storage) -> None:
        storage.create_user(UserCreate(username="sam", password="s3cret-pass"))

        with pytest.raises(DuplicateRecordError):
            storage.create_user(UserCreate(username="sam", password="another-pass"))

    def test_unknown_user(self, storage) -> None:
        assert storage.get_user(1) is None
        assert storage.get_user_by_username("nobody") is None


class TestMemStorageConcurrency:
    """Uniqueness holds when the same record is created from several threads at once."""

    def attempt(self, create, times: int = 8):
        def run(_):
            try:
                return create()
            except DuplicateRecordError:
                return None

        with ThreadPoolExecutor(max_workers=times) as pool:
            return [r for r in pool.map(run, range(times)) if r is not None]

    def test_one_budget_per_period(self) -> None:
        store = MemStorage()

        created = self.attempt(lambda: store.create_budget(budget_data()))

        assert len(created) == 1
        assert len(store.list_budgets()) == 1

    def test_one_category_per_name(self) -> None:
        store = MemStorage()

        created = self.attempt(lambda: store.create_category(CategoryCreate(name="Pets", color="#aabbcc", icon="paw")))

        assert len(created) == 1
        assert [c.name for c in store.list_categories()].count("Pets") == 1


class TestMongoStorage:
    """Behaviour specific to the MongoDB backend."""

    @pytest.fixture
    def db(self):
        return mongomock.MongoClient()["finance-tracker-test"]

    def test_amount_is_stored_as_decimal_text(self, db) -> None:
        store = MongoStorage(db)
        store.initialize()
        created = store.create_transaction(tx_data(amount="19.9"))

        doc = db["transactions"].find_one({"id": created.id})

        assert doc["amount"] == "19.90"
        assert doc["categoryId"] == 1
        assert "createdAt" in doc

    def test_restart_does_not_reseed_or_reuse_ids(self, db) -> None:
        first = MongoStorage(db)
        first.initialize()
        created = first.create_transaction(tx_data())
        first.delete_transaction(created.id)

        second = MongoStorage(db)
        second.initialize()

        assert db["categories"].count_documents({}) == 8
        assert second.create_transaction(tx_data()).id == created.id + 1

    def test_counters_catch_up_with_existing_documents(self, db) -> None:
        db["transactions"].insert_one({
            "id": 41,
            "description": "Imported",
            "amount": "5.00",
            "date": datetime(2024, 6, 1),
            "categoryId": 2,
            "type": "expense",
            "createdAt": datetime(2024, 6, 1),
        })
        store = MongoStorage(db)
        store.initialize()

        assert store.get_transaction(41).description == "Imported"
        assert store.create_transaction(tx_data()).id == 42

    def test_describe_counts_documents(self, db) -> None:
        store = MongoStorage(db)
        store.initialize()

        info = store.describe()

        assert info["storage"] == "mongodb"
        assert info["collections"]["categories"] == 8
        assert info["collections"]["transactions"] == 0

    def test_next_id_is_monotonic(self, db) -> None:
        assert [database.next_id(db, "widgets") for _ in range(3)] == [1, 2, 3]

    def test_partial_seed_is_completed(self, db) -> None:
        for category_id, category in enumerate(DEFAULT_CATEGORIES[:3], start=1):
            db["categories"].insert_one({"id": category_id, **category.model_dump(by_alias=True)})

        store = MongoStorage(db)
        store.initialize()
        store.initialize()

        names = [c.name for c in store.list_categories()]
        assert names == [c.name for c in DEFAULT_CATEGORIES]
        assert [c.id for c in store.list_categories()] == list(range(1, 9))
