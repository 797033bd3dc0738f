from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError
from sqlalchemy import case, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cache import CacheClient, NullCache
from models import Budget, Category, Transaction, TransactionType
from schemas import (
    Analytics,
    AnalyticsSummary,
    CategoryAnalytics,
    CategoryOut,
    TransactionIn,
    TransactionOut,
    quantize_money,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSACTIONS_KEY = "transactions"
ANALYTICS_KEY = "analytics"
TRANSACTIONS_TTL_SECS = 60
ANALYTICS_TTL_SECS = 300
ANALYTICS_WINDOW_DAYS = 30
TRANSACTIONS_LIST_LIMIT = 100

DEFAULT_CATEGORIES: list[tuple[str, TransactionType, str]] = [
    ("Groceries", TransactionType.expense, "#e74c3c"),
    ("Rent", TransactionType.expense, "#e67e22"),
    ("Utilities", TransactionType.expense, "#f39c12"),
    ("Transportation", TransactionType.expense, "#3498db"),
    ("Entertainment", TransactionType.expense, "#9b59b6"),
    ("Salary", TransactionType.income, "#27ae60"),
    ("Freelance", TransactionType.income, "#16a085"),
]


def to_money(value: object) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return quantize_money(value)


def _transaction_out(
    txn: Transaction, category_name: Optional[str], category_color: Optional[str]
) -> TransactionOut:
    return TransactionOut(
        id=txn.id,
        date=txn.date,
        description=txn.description,
        amount=to_money(txn.amount),
        category_id=txn.category_id,
        type=txn.type,
        notes=txn.notes,
        created_at=txn.created_at,
        category_name=category_name,
        category_color=category_color,
    )


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[CategoryOut]:
        stmt = select(Category).order_by(Category.name, Category.id)
        return [
            CategoryOut.model_validate(category)
            for category in self.session.scalars(stmt).all()
        ]

    def seed_defaults(self, commit: bool = True) -> int:
        """Insert the default categories, skipping existing ``(name, type)`` pairs."""
        existing = {
            (row.name, row.type)
            for row in self.session.execute(select(Category.name, Category.type))
        }
        created = 0
        for name, txn_type, color in DEFAULT_CATEGORIES:
            if (name, txn_type) in existing:
                continue
            self.session.add(Category(name=name, type=txn_type, color=color))
            existing.add((name, txn_type))
            created += 1
        if commit:
            self.session.commit()
        else:
            self.session.flush()
        return created


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_recent(self, limit: int = TRANSACTIONS_LIST_LIMIT) -> list[TransactionOut]:
        stmt = (
            select(Transaction, Category.name, Category.color)
            .outerjoin(Category, Category.id == Transaction.category_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        rows = self.session.execute(stmt).all()
        return [_transaction_out(txn, name, color) for txn, name, color in rows]

    def create(self, data: TransactionIn) -> TransactionOut:
        category: Optional[Category] = None
        if data.category_id is not None:
            category = self.session.get(Category, data.category_id)
            if category is None:
                raise ValueError("Category not found")
            if category.type != data.type:
                raise ValueError("Category type mismatch")

        txn = Transaction(
            date=data.date,
            description=data.description,
            amount=data.amount,
            category_id=data.category_id,
            type=data.type,
            notes=data.notes,
        )
        self.session.add(txn)
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(txn)
        return _transaction_out(
            txn,
            category.name if category else None,
            category.color if category else None,
        )

    def delete(self, transaction_id: int) -> int:
        """Delete one transaction. Unknown ids are not an error; returns rows removed."""
        try:
            result = self.session.execute(
                delete(Transaction).where(Transaction.id == transaction_id)
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return result.rowcount or 0


class AnalyticsService:
    def __init__(
        self,
        session: Session,
        window_days: int = ANALYTICS_WINDOW_DAYS,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.session = session
        self.window_days = window_days
        self._today = today or date.today

    def window_start(self) -> date:
        # Inclusive: rows dated exactly on this day are in the window.
        return self._today() - timedelta(days=self.window_days)

    def summary(self) -> AnalyticsSummary:
        cutoff = self.window_start()
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (Transaction.type == TransactionType.income, Transaction.amount),
                        else_=0,
                    )
                ),
                0,
            ).label("total_income"),
            func.coalesce(
                func.sum(
                    case(
                        (Transaction.type == TransactionType.expense, Transaction.amount),
                        else_=0,
                    )
                ),
                0,
            ).label("total_expenses"),
            func.count(Transaction.id).label("transaction_count"),
        ).where(Transaction.date >= cutoff)
        row = self.session.execute(stmt).one()
        return AnalyticsSummary(
            total_income=to_money(row.total_income),
            total_expenses=to_money(row.total_expenses),
            transaction_count=int(row.transaction_count or 0),
        )

    def by_category(self) -> list[CategoryAnalytics]:
        cutoff = self.window_start()
        total = func.coalesce(func.sum(Transaction.amount), 0).label("total")
        stmt = (
            select(Category.name, Category.color, total)
            .select_from(Transaction)
            .join(Category, Category.id == Transaction.category_id)
            .where(
                Transaction.date >= cutoff,
                Transaction.type == TransactionType.expense,
            )
            .group_by(Category.name, Category.color)
            .order_by(total.desc(), Category.name)
        )
        return [
            CategoryAnalytics(name=row.name, color=row.color, total=to_money(row.total))
            for row in self.session.execute(stmt).all()
        ]

    def compute(self) -> Analytics:
        return Analytics(summary=self.summary(), by_category=self.by_category())


_TRANSACTIONS_ADAPTER = TypeAdapter(list[TransactionOut])
_ANALYTICS_ADAPTER = TypeAdapter(Analytics)


class CacheCoordinator:
    """Cache-aside reads and invalidate-after-write mutations.

    Reads try the cache first and fall back to the database, storing the fresh
    result afterwards. Mutations hit the database first and then drop both
    cached payloads. Cache problems are logged and otherwise ignored.
    """

    def __init__(
        self,
        session: Session,
        cache: Optional[CacheClient] = None,
        *,
        transactions_ttl: int = TRANSACTIONS_TTL_SECS,
        analytics_ttl: int = ANALYTICS_TTL_SECS,
        window_days: int = ANALYTICS_WINDOW_DAYS,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.session = session
        self.cache = cache or NullCache()
        self.transactions_ttl = transactions_ttl
        self.analytics_ttl = analytics_ttl
        self.window_days = window_days
        self.today = today

    def transactions(self) -> list[TransactionOut]:
        return self._read_through(
            TRANSACTIONS_KEY,
            _TRANSACTIONS_ADAPTER,
            self.transactions_ttl,
            TransactionService(self.session).list_recent,
        )

    def analytics(self) -> Analytics:
        service = AnalyticsService(self.session, self.window_days, self.today)
        return self._read_through(
            ANALYTICS_KEY, _ANALYTICS_ADAPTER, self.analytics_ttl, service.compute
        )

    def create_transaction(self, data: TransactionIn) -> TransactionOut:
        txn = TransactionService(self.session).create(data)
        self.invalidate()
        return txn

    def delete_transaction(self, transaction_id: int) -> int:
        deleted = TransactionService(self.session).delete(transaction_id)
        self.invalidate()
        return deleted

    def invalidate(self) -> None:
        # Every mutation drops both payloads, whether or not analytics changed.
        for key in (TRANSACTIONS_KEY, ANALYTICS_KEY):
            result = self.cache.delete(key)
            if not result.ok:
                logger.warning(f"cache_delete_failed: key={key} error={result.error!r}")

    def _read_through(
        self,
        key: str,
        adapter: TypeAdapter[T],
        ttl: int,
        loader: Callable[[], T],
    ) -> T:
        cached = self.cache.get(key)
        if cached.hit:
            try:
                return adapter.validate_json(cached.value)
            except ValidationError as exc:
                logger.warning(
                    f"cache_payload_invalid: key={key} errors={exc.error_count()}"
                )
        elif not cached.ok:
            logger.warning(f"cache_get_failed: key={key} error={cached.error!r}")

        result = loader()

        try:
            payload = adapter.dump_json(result, by_alias=True)
        except PydanticSerializationError as exc:
            logger.warning(f"cache_encode_failed: key={key} error={exc}")
            return result
        stored = self.cache.set(key, payload, ttl)
        if not stored.ok:
            logger.warning(f"cache_set_failed: key={key} error={stored.error!r}")
        return result


def seed_demo_data(session: Session, today: Optional[date] = None) -> int:
    """Fill an empty ledger with a month of sample activity and monthly budgets.

    Does nothing when any transaction already exists. Returns the number of
    transactions inserted.
    """
    if session.scalar(select(func.count(Transaction.id))):
        return 0
    CategoryService(session).seed_defaults(commit=False)

    today = today or date.today()
    categories = {
        (c.name, c.type): c for c in session.scalars(select(Category)).all()
    }

    def cat(name: str, txn_type: TransactionType) -> Category:
        return categories[(name, txn_type)]

    income, expense = TransactionType.income, TransactionType.expense
    entries = [
        (25, "Monthly salary", "3500.00", cat("Salary", income)),
        (10, "Website project", "850.00", cat("Freelance", income)),
        (24, "Apartment rent", "1200.00", cat("Rent", expense)),
        (21, "Weekly groceries", "86.40", cat("Groceries", expense)),
        (14, "Weekly groceries", "92.15", cat("Groceries", expense)),
        (7, "Weekly groceries", "78.90", cat("Groceries", expense)),
        (20, "Electricity bill", "64.30", cat("Utilities", expense)),
        (18, "Internet", "39.99", cat("Utilities", expense)),
        (16, "Monthly transit pass", "49.00", cat("Transportation", expense)),
        (5, "Fuel", "55.20", cat("Transportation", expense)),
        (12, "Cinema", "24.00", cat("Entertainment", expense)),
        (3, "Concert tickets", "110.00", cat("Entertainment", expense)),
        (2, "Cash withdrawal", "60.00", None),
    ]
    for days_ago, description, amount, category in entries:
        session.add(
            Transaction(
                date=today - timedelta(days=days_ago),
                description=description,
                amount=Decimal(amount),
                category_id=category.id if category else None,
                type=category.type if category else expense,
            )
        )

    month_start = today.replace(day=1)
    budgets = [
        ("Groceries", "400.00"),
        ("Rent", "1200.00"),
        ("Utilities", "150.00"),
        ("Transportation", "120.00"),
        ("Entertainment", "150.00"),
    ]
    for name, amount in budgets:
        session.add(
            Budget(
                category_id=cat(name, expense).id,
                amount=Decimal(amount),
                period="monthly",
                start_date=month_start,
            )
        )
    session.commit()
    return len(entries)
