"""
Record storage for categories, transactions, budgets and users.

Two interchangeable backends share the Storage contract: MemStorage keeps
everything in process memory, MongoStorage persists to MongoDB. The backend
is picked once at startup by create_storage().
"""
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from passlib.context import CryptContext
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, OperationFailure

import database
from config import Config
from schemas import (
    Budget,
    BudgetCreate,
    BudgetUpdate,
    BudgetWithCategory,
    Category,
    CategoryCreate,
    Transaction,
    TransactionCreate,
    TransactionUpdate,
    TransactionWithCategory,
    User,
    UserCreate,
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

COLLECTIONS = ("categories", "transactions", "budgets", "users")

DEFAULT_CATEGORIES = [
    CategoryCreate(name="Food & Dining", color="#2563eb", icon="utensils"),
    CategoryCreate(name="Transportation", color="#16a34a", icon="car"),
    CategoryCreate(name="Shopping", color="#ea580c", icon="shopping-bag"),
    CategoryCreate(name="Entertainment", color="#8b5cf6", icon="music"),
    CategoryCreate(name="Bills & Utilities", color="#06b6d4", icon="receipt"),
    CategoryCreate(name="Income", color="#059669", icon="trending-up"),
    CategoryCreate(name="Healthcare", color="#dc2626", icon="heart"),
    CategoryCreate(name="Education", color="#7c3aed", icon="book"),
]


class StorageError(Exception):
    pass


class DuplicateRecordError(StorageError):
    pass


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def utcnow() -> datetime:
    # millisecond precision, the same resolution BSON dates keep
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def resolve_category(categories: Sequence[Category], category_id: Optional[int]) -> Optional[Category]:
    """Category for ``category_id``, or the first category when the id does not resolve."""
    for category in categories:
        if category.id == category_id:
            return category
    return categories[0] if categories else None


def with_category(tx: Transaction, categories: Sequence[Category]) -> TransactionWithCategory:
    return TransactionWithCategory(**tx.model_dump(), category=resolve_category(categories, tx.category_id))


def budget_with_category(budget: Budget, categories: Sequence[Category]) -> BudgetWithCategory:
    return BudgetWithCategory(**budget.model_dump(), category=resolve_category(categories, budget.category_id))


def transaction_order(tx: Transaction):
    return (tx.date, tx.id)


def budget_order(budget: Budget):
    return (budget.year, budget.month, budget.id)


class Storage(ABC):
    """
    Storage contract shared by every backend.

    Listings join each record with its category and are ordered newest
    first: transactions by date, budgets by period, ties by id. Categories
    are listed by id. ``update_*`` merges only the fields present in the
    change set and returns None for an unknown id. Unique constraints raise
    DuplicateRecordError.
    """

    kind = "abstract"

    @abstractmethod
    def initialize(self) -> None:
        """Prepare the backend and seed any missing default categories."""

    def close(self) -> None:
        pass

    @abstractmethod
    def describe(self) -> Dict[str, Any]: ...

    # Categories
    @abstractmethod
    def list_categories(self) -> List[Category]: ...

    @abstractmethod
    def get_category(self, category_id: int) -> Optional[Category]: ...

    @abstractmethod
    def create_category(self, data: CategoryCreate) -> Category: ...

    # Transactions
    @abstractmethod
    def list_transactions(self) -> List[TransactionWithCategory]: ...

    @abstractmethod
    def get_transaction(self, transaction_id: int) -> Optional[Transaction]: ...

    @abstractmethod
    def create_transaction(self, data: TransactionCreate) -> Transaction: ...

    @abstractmethod
    def update_transaction(self, transaction_id: int, changes: TransactionUpdate) -> Optional[Transaction]: ...

    @abstractmethod
    def delete_transaction(self, transaction_id: int) -> bool: ...

    @abstractmethod
    def list_transactions_by_date_range(self, start: datetime, end: datetime) -> List[TransactionWithCategory]:
        """Transactions dated between ``start`` and ``end``, both inclusive."""

    @abstractmethod
    def list_transactions_by_category(self, category_id: int) -> List[TransactionWithCategory]: ...

    # Budgets
    @abstractmethod
    def list_budgets(self) -> List[BudgetWithCategory]: ...

    @abstractmethod
    def get_budget(self, budget_id: int) -> Optional[Budget]: ...

    @abstractmethod
    def create_budget(self, data: BudgetCreate) -> Budget: ...

    @abstractmethod
    def update_budget(self, budget_id: int, changes: BudgetUpdate) -> Optional[Budget]: ...

    @abstractmethod
    def delete_budget(self, budget_id: int) -> bool: ...

    @abstractmethod
    def find_budget(self, category_id: Optional[int], month: int, year: int) -> Optional[Budget]: ...

    # Users
    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    def create_user(self, data: UserCreate) -> User: ...


class MemStorage(Storage):
    """Process-local storage. Records are replaced whole, never edited in place.

    Uniqueness checks and the insert that follows them run under one lock.
    """

    kind = "memory"

    def __init__(self):
        self.categories: Dict[int, Category] = {}
        self.transactions: Dict[int, Transaction] = {}
        self.budgets: Dict[int, Budget] = {}
        self.users: Dict[int, User] = {}
        self._ids = {name: itertools.count(1) for name in COLLECTIONS}
        self._lock = threading.Lock()
        self.initialize()

    def _next_id(self, collection: str) -> int:
        return next(self._ids[collection])

    def initialize(self) -> None:
        if not self.categories:
            for category in DEFAULT_CATEGORIES:
                self.create_category(category)

    def describe(self) -> Dict[str, Any]:
        return {
            "storage": self.kind,
            "collections": {
                "categories": len(self.categories),
                "transactions": len(self.transactions),
                "budgets": len(self.budgets),
                "users": len(self.users),
            },
        }

    def list_categories(self) -> List[Category]:
        return sorted(self.categories.values(), key=lambda c: c.id)

    def get_category(self, category_id: int) -> Optional[Category]:
        return self.categories.get(category_id)

    def create_category(self, data: CategoryCreate) -> Category:
        with self._lock:
            if any(c.name == data.name for c in self.categories.values()):
                raise DuplicateRecordError(f"Category {data.name!r} already exists")
            category = Category(id=self._next_id("categories"), **data.model_dump())
            self.categories[category.id] = category
        return category

    def _joined(self, transactions) -> List[TransactionWithCategory]:
        categories = self.list_categories()
        ordered = sorted(transactions, key=transaction_order, reverse=True)
        return [with_category(t, categories) for t in ordered]

    def list_transactions(self) -> List[TransactionWithCategory]:
        return self._joined(self.transactions.values())

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return self.transactions.get(transaction_id)

    def create_transaction(self, data: TransactionCreate) -> Transaction:
        tx = Transaction(id=self._next_id("transactions"), created_at=utcnow(), **data.model_dump())
        self.transactions[tx.id] = tx
        return tx

    def update_transaction(self, transaction_id: int, changes: TransactionUpdate) -> Optional[Transaction]:
        current = self.transactions.get(transaction_id)
        if current is None:
            return None
        updated = current.model_copy(update=changes.changes())
        self.transactions[transaction_id] = updated
        return updated

    def delete_transaction(self, transaction_id: int) -> bool:
        return self.transactions.pop(transaction_id, None) is not None

    def list_transactions_by_date_range(self, start: datetime, end: datetime) -> List[TransactionWithCategory]:
        return self._joined(t for t in self.transactions.values() if start <= t.date <= end)

    def list_transactions_by_category(self, category_id: int) -> List[TransactionWithCategory]:
        return self._joined(t for t in self.transactions.values() if t.category_id == category_id)

    def list_budgets(self) -> List[BudgetWithCategory]:
        categories = self.list_categories()
        ordered = sorted(self.budgets.values(), key=budget_order, reverse=True)
        return [budget_with_category(b, categories) for b in ordered]

    def get_budget(self, budget_id: int) -> Optional[Budget]:
        return self.budgets.get(budget_id)

    def _check_period_free(self, budget: BudgetCreate, budget_id: Optional[int] = None) -> None:
        clash = self.find_budget(budget.category_id, budget.month, budget.year)
        if clash is not None and clash.id != budget_id:
            raise DuplicateRecordError(
                f"A budget for category {budget.category_id} in {budget.month}/{budget.year} already exists"
            )

    def create_budget(self, data: BudgetCreate) -> Budget:
        with self._lock:
            self._check_period_free(data)
            budget = Budget(id=self._next_id("budgets"), created_at=utcnow(), **data.model_dump())
            self.budgets[budget.id] = budget
        return budget

    def update_budget(self, budget_id: int, changes: BudgetUpdate) -> Optional[Budget]:
        with self._lock:
            current = self.budgets.get(budget_id)
            if current is None:
                return None
            updated = current.model_copy(update=changes.changes())
            self._check_period_free(updated, budget_id)
            self.budgets[budget_id] = updated
        return updated

    def delete_budget(self, budget_id: int) -> bool:
        return self.budgets.pop(budget_id, None) is not None

    def find_budget(self, category_id: Optional[int], month: int, year: int) -> Optional[Budget]:
        for budget in self.budgets.values():
            if budget.category_id == category_id and budget.month == month and budget.year == year:
                return budget
        return None

    def get_user(self, user_id: int) -> Optional[User]:
        return self.users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        for user in self.users.values():
            if user.username == username:
                return user
        return None

    def create_user(self, data: UserCreate) -> User:
        password_hash = get_password_hash(data.password)
        with self._lock:
            if self.get_user_by_username(data.username) is not None:
                raise DuplicateRecordError(f"User {data.username!r} already exists")
            user = User(id=self._next_id("users"), username=data.username, password_hash=password_hash)
            self.users[user.id] = user
        return user


def encode(data: Dict[str, Any]) -> Dict[str, Any]:
    # money is kept as exact decimal text, BSON has no Decimal type
    return {key: str(value) if isinstance(value, Decimal) else value for key, value in data.items()}


NO_ID = {"_id": 0}


class MongoStorage(Storage):
    """Storage backed by a MongoDB database; documents use camelCase field names."""

    kind = "mongodb"

    def __init__(self, db: Database):
        self.db = db
        self.categories_collection = db["categories"]
        self.transactions_collection = db["transactions"]
        self.budgets_collection = db["budgets"]
        self.users_collection = db["users"]

    def initialize(self) -> None:
        self._create_indexes()
        for name in COLLECTIONS:
            database.sync_counter(self.db, name)
        self._seed_default_categories()

    def _seed_default_categories(self) -> None:
        """Insert the default categories that are missing by name."""
        seeded = 0
        for category in DEFAULT_CATEGORIES:
            if self.categories_collection.find_one({"name": category.name}, NO_ID) is not None:
                continue
            try:
                self.create_category(category)
            except DuplicateRecordError:
                logger.warning("Default category %r was seeded concurrently, skipping", category.name)
            else:
                seeded += 1
        if seeded:
            logger.info("Default categories initialized (%d added)", seeded)

    def _create_indexes(self) -> None:
        try:
            self.categories_collection.create_index([("id", ASCENDING)], unique=True)
            self.categories_collection.create_index([("name", ASCENDING)], unique=True)
            self.transactions_collection.create_index([("id", ASCENDING)], unique=True)
            self.transactions_collection.create_index([("categoryId", ASCENDING)])
            self.transactions_collection.create_index([("date", DESCENDING)])
            self.transactions_collection.create_index([("type", ASCENDING)])
            self.budgets_collection.create_index([("id", ASCENDING)], unique=True)
            self.budgets_collection.create_index(
                [("categoryId", ASCENDING), ("month", ASCENDING), ("year", ASCENDING)], unique=True
            )
            self.users_collection.create_index([("id", ASCENDING)], unique=True)
            self.users_collection.create_index([("username", ASCENDING)], unique=True)
        except OperationFailure as exc:
            logger.warning("Could not create indexes, continuing with existing ones: %s", exc)

    def close(self) -> None:
        self.db.client.close()
        logger.info("Disconnected from MongoDB")

    def describe(self) -> Dict[str, Any]:
        return {"storage": self.kind, **database.describe(self.db, COLLECTIONS)}

    # Categories
    def list_categories(self) -> List[Category]:
        docs = self.categories_collection.find({}, NO_ID).sort("id", ASCENDING)
        return [Category.model_validate(doc) for doc in docs]

    def get_category(self, category_id: int) -> Optional[Category]:
        doc = self.categories_collection.find_one({"id": category_id}, NO_ID)
        return Category.model_validate(doc) if doc else None

    def create_category(self, data: CategoryCreate) -> Category:
        category = Category(id=database.next_id(self.db, "categories"), **data.model_dump())
        try:
            database.create_document(self.db, "categories", category.model_dump(by_alias=True))
        except DuplicateKeyError as exc:
            raise DuplicateRecordError(f"Category {data.name!r} already exists") from exc
        return category

    # Transactions
    def _joined(self, query: Dict[str, Any]) -> List[TransactionWithCategory]:
        docs = self.transactions_collection.find(query, NO_ID).sort([("date", DESCENDING), ("id", DESCENDING)])
        categories = self.list_categories()
        return [with_category(Transaction.model_validate(doc), categories) for doc in docs]

    def list_transactions(self) -> List[TransactionWithCategory]:
        return self._joined({})

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        doc = self.transactions_collection.find_one({"id": transaction_id}, NO_ID)
        return Transaction.model_validate(doc) if doc else None

    def create_transaction(self, data: TransactionCreate) -> Transaction:
        tx = Transaction(id=database.next_id(self.db, "transactions"), created_at=utcnow(), **data.model_dump())
        database.create_document(self.db, "transactions", encode(tx.model_dump(by_alias=True)))
        return tx

    def _update(self, collection, record_id: int, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not changes:
            return collection.find_one({"id": record_id}, NO_ID)
        return collection.find_one_and_update(
            {"id": record_id},
            {"$set": encode(changes)},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )

    def update_transaction(self, transaction_id: int, changes: TransactionUpdate) -> Optional[Transaction]:
        doc = self._update(self.transactions_collection, transaction_id, changes.changes(by_alias=True))
        return Transaction.model_validate(doc) if doc else None

    def delete_transaction(self, transaction_id: int) -> bool:
        return self.transactions_collection.delete_one({"id": transaction_id}).deleted_count > 0

    def list_transactions_by_date_range(self, start: datetime, end: datetime) -> List[TransactionWithCategory]:
        return self._joined({"date": {"$gte": start, "$lte": end}})

    def list_transactions_by_category(self, category_id: int) -> List[TransactionWithCategory]:
        return self._joined({"categoryId": category_id})

    # Budgets
    def list_budgets(self) -> List[BudgetWithCategory]:
        docs = self.budgets_collection.find({}, NO_ID).sort(
            [("year", DESCENDING), ("month", DESCENDING), ("id", DESCENDING)]
        )
        categories = self.list_categories()
        return [budget_with_category(Budget.model_validate(doc), categories) for doc in docs]

    def get_budget(self, budget_id: int) -> Optional[Budget]:
        doc = self.budgets_collection.find_one({"id": budget_id}, NO_ID)
        return Budget.model_validate(doc) if doc else None

    def create_budget(self, data: BudgetCreate) -> Budget:
        budget = Budget(id=database.next_id(self.db, "budgets"), created_at=utcnow(), **data.model_dump())
        try:
            database.create_document(self.db, "budgets", encode(budget.model_dump(by_alias=True)))
        except DuplicateKeyError as exc:
            raise DuplicateRecordError(
                f"A budget for category {data.category_id} in {data.month}/{data.year} already exists"
            ) from exc
        return budget

    def update_budget(self, budget_id: int, changes: BudgetUpdate) -> Optional[Budget]:
        try:
            doc = self._update(self.budgets_collection, budget_id, changes.changes(by_alias=True))
        except DuplicateKeyError as exc:
            raise DuplicateRecordError("Another budget already covers that category and period") from exc
        return Budget.model_validate(doc) if doc else None

    def delete_budget(self, budget_id: int) -> bool:
        return self.budgets_collection.delete_one({"id": budget_id}).deleted_count > 0

    def find_budget(self, category_id: Optional[int], month: int, year: int) -> Optional[Budget]:
        doc = self.budgets_collection.find_one({"categoryId": category_id, "month": month, "year": year}, NO_ID)
        return Budget.model_validate(doc) if doc else None

    # Users
    def get_user(self, user_id: int) -> Optional[User]:
        doc = self.users_collection.find_one({"id": user_id}, NO_ID)
        return User.model_validate(doc) if doc else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        doc = self.users_collection.find_one({"username": username}, NO_ID)
        return User.model_validate(doc) if doc else None

    def create_user(self, data: UserCreate) -> User:
        user = User(id=database.next_id(self.db, "users"), username=data.username, password_hash=get_password_hash(data.password))
        try:
            database.create_document(self.db, "users", user.model_dump(by_alias=True))
        except DuplicateKeyError as exc:
            raise DuplicateRecordError(f"User {data.username!r} already exists") from exc
        return user


def create_storage() -> Storage:
    if Config.use_mongo():
        logger.info("Using MongoDB storage")
        return MongoStorage(database.connect(Config.MONGODB_URI, Config.DATABASE_NAME))
    logger.info("Using in-memory storage (no MONGODB_URI provided)")
    return MemStorage()
