from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from cache import CacheClient, CacheResult, MemoryCache, NullCache
from database import Base
from models import Category, Transaction, TransactionType
from schemas import TransactionIn
from services import (
    ANALYTICS_KEY,
    TRANSACTIONS_KEY,
    CacheCoordinator,
    _ANALYTICS_ADAPTER,
    _TRANSACTIONS_ADAPTER,
)

TODAY = date(2026, 10, 19)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


class RecordingCache(MemoryCache):
    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, str]] = []
        self.ttls: dict[str, int] = {}

    def get(self, key):
        self.calls.append(("get", key))
        return super().get(key)

    def set(self, key, value, ttl):
        self.calls.append(("set", key))
        self.ttls[key] = ttl
        return super().set(key, value, ttl)

    def delete(self, key):
        self.calls.append(("delete", key))
        return super().delete(key)


class BrokenCache(CacheClient):
    def __init__(self) -> None:
        self.error = ConnectionError("cache unreachable")

    def get(self, key):
        return CacheResult(error=self.error)

    def set(self, key, value, ttl):
        return CacheResult(error=self.error)

    def delete(self, key):
        return CacheResult(error=self.error)


def coordinator(session, cache=None) -> CacheCoordinator:
    return CacheCoordinator(session, cache, today=lambda: TODAY)


def seed(session):
    food = Category(name="Food", type=TransactionType.expense, color="#e74c3c")
    salary = Category(name="Salary", type=TransactionType.income, color="#27ae60")
    session.add_all([food, salary])
    session.commit()
    return food, salary


def expense(category, amount="100.00", days_ago=1) -> TransactionIn:
    return TransactionIn(
        date=TODAY - timedelta(days=days_ago),
        description="Groceries run",
        amount=Decimal(amount),
        category_id=category.id,
        type=TransactionType.expense,
    )


def test_miss_populates_cache_with_store_result() -> None:
    session = make_session()
    food, _ = seed(session)
    cache = RecordingCache()
    coord = coordinator(session, cache)
    coord.create_transaction(expense(food))
    cache.calls.clear()

    listing = coord.transactions()
    analytics = coord.analytics()

    assert cache.calls == [
        ("get", TRANSACTIONS_KEY),
        ("set", TRANSACTIONS_KEY),
        ("get", ANALYTICS_KEY),
        ("set", ANALYTICS_KEY),
    ]
    assert cache.ttls == {TRANSACTIONS_KEY: 60, ANALYTICS_KEY: 300}
    assert cache.get(TRANSACTIONS_KEY).value == _TRANSACTIONS_ADAPTER.dump_json(
        listing, by_alias=True
    )
    assert cache.get(ANALYTICS_KEY).value == _ANALYTICS_ADAPTER.dump_json(
        analytics, by_alias=True
    )
    assert b'"byCategory"' in cache.get(ANALYTICS_KEY).value


def test_hit_is_served_without_touching_the_store() -> None:
    session = make_session()
    food, _ = seed(session)
    cache = MemoryCache()
    coord = coordinator(session, cache)
    coord.create_transaction(expense(food))
    first = coord.transactions()

    # Written behind the coordinator's back, so no invalidation happens.
    session.add(
        Transaction(
            date=TODAY,
            description="Direct insert",
            amount=Decimal("5.00"),
            type=TransactionType.expense,
        )
    )
    session.commit()

    assert coord.transactions() == first
    assert len(coordinator(session).transactions()) == 2


def test_corrupt_payload_falls_back_to_store() -> None:
    session = make_session()
    food, _ = seed(session)
    cache = MemoryCache()
    coord = coordinator(session, cache)
    coord.create_transaction(expense(food, "42.00"))
    cache.set(ANALYTICS_KEY, b"{not json", 300)

    analytics = coord.analytics()

    assert analytics.summary.total_expenses == Decimal("42.00")
    assert cache.get(ANALYTICS_KEY).value == _ANALYTICS_ADAPTER.dump_json(
        analytics, by_alias=True
    )


def test_broken_cache_never_fails_requests() -> None:
    session = make_session()
    food, _ = seed(session)
    coord = coordinator(session, BrokenCache())

    created = coord.create_transaction(expense(food))
    assert coord.transactions()[0].id == created.id
    assert coord.analytics().summary.total_expenses == Decimal("100.00")
    assert coord.delete_transaction(created.id) == 1
    assert coord.transactions() == []


def test_create_invalidates_both_keys() -> None:
    session = make_session()
    food, _ = seed(session)
    cache = RecordingCache()
    coord = coordinator(session, cache)
    coord.transactions()
    coord.analytics()
    cache.calls.clear()

    coord.create_transaction(expense(food))

    assert cache.calls == [("delete", TRANSACTIONS_KEY), ("delete", ANALYTICS_KEY)]
    assert not cache.get(TRANSACTIONS_KEY).hit
    assert not cache.get(ANALYTICS_KEY).hit


def test_analytics_reflects_create_after_cached_read() -> None:
    session = make_session()
    food, _ = seed(session)
    coord = coordinator(session, MemoryCache())
    coord.create_transaction(expense(food, "12.34"))

    def food_total() -> Decimal:
        for row in coord.analytics().by_category:
            if row.name == "Food":
                return row.total
        return Decimal("0.00")

    before = food_total()
    coord.create_transaction(expense(food, "100.00"))

    assert food_total() - before == Decimal("100.00")


def test_delete_invalidates_and_is_reflected() -> None:
    session = make_session()
    food, _ = seed(session)
    cache = MemoryCache()
    coord = coordinator(session, cache)
    created = coord.create_transaction(expense(food, "100.00"))
    assert coord.analytics().summary.transaction_count == 1

    assert coord.delete_transaction(created.id) == 1

    assert coord.analytics().summary.transaction_count == 0
    assert coord.transactions() == []


def test_delete_unknown_id_is_a_noop() -> None:
    session = make_session()
    food, _ = seed(session)
    coord = coordinator(session, RecordingCache())
    coord.create_transaction(expense(food))

    assert coord.delete_transaction(9999) == 0
    assert session.scalar(select(func.count(Transaction.id))) == 1
    assert coord.cache.calls[-2:] == [
        ("delete", TRANSACTIONS_KEY),
        ("delete", ANALYTICS_KEY),
    ]


def test_rejected_create_leaves_cache_alone() -> None:
    session = make_session()
    _, salary = seed(session)
    cache = RecordingCache()
    coord = coordinator(session, cache)
    coord.transactions()
    cache.calls.clear()

    with pytest.raises(ValueError, match="type mismatch"):
        coord.create_transaction(expense(salary))
    with pytest.raises(ValueError, match="not found"):
        coord.create_transaction(
            TransactionIn(
                date=TODAY,
                description="Ghost",
                amount=Decimal("1.00"),
                category_id=404,
                type=TransactionType.expense,
            )
        )

    assert cache.calls == []
    assert cache.get(TRANSACTIONS_KEY).hit


def test_created_ids_increase() -> None:
    session = make_session()
    food, _ = seed(session)
    coord = coordinator(session)

    ids = [coord.create_transaction(expense(food)).id for _ in range(5)]

    assert ids == sorted(set(ids))


def test_created_row_is_fully_populated() -> None:
    session = make_session()
    food, _ = seed(session)

    created = coordinator(session).create_transaction(
        TransactionIn(
            date=TODAY,
            description="Market",
            amount=Decimal("19.9"),
            category_id=food.id,
            type=TransactionType.expense,
            notes="cash",
        )
    )

    assert created.id > 0
    assert created.created_at is not None
    assert created.amount == Decimal("19.90")
    assert (created.category_name, created.category_color) == ("Food", "#e74c3c")
    assert created.notes == "cash"


def test_listing_is_newest_first_and_capped() -> None:
    session = make_session()
    food, _ = seed(session)
    for days_ago in range(105):
        session.add(
            Transaction(
                date=TODAY - timedelta(days=days_ago),
                description=f"day {days_ago}",
                amount=Decimal("1.00"),
                type=TransactionType.expense,
                category_id=food.id if days_ago % 2 else None,
            )
        )
    session.commit()

    listing = coordinator(session).transactions()

    assert len(listing) == 100
    assert listing[0].date == TODAY
    assert [t.date for t in listing] == sorted((t.date for t in listing), reverse=True)
    assert listing[0].category_name is None
    assert listing[1].category_name == "Food"


def test_results_match_with_and_without_cache() -> None:
    session = make_session()
    food, salary = seed(session)
    cached = coordinator(session, MemoryCache())
    uncached = coordinator(session, NullCache())
    cached.create_transaction(expense(food, "30.00"))
    uncached.create_transaction(
        TransactionIn(
            date=TODAY,
            description="Salary",
            amount=Decimal("3500.00"),
            category_id=salary.id,
            type=TransactionType.income,
        )
    )

    for _ in range(2):
        assert cached.transactions() == uncached.transactions()
        assert cached.analytics() == uncached.analytics()
