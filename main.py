import logging
from datetime import timedelta
from typing import Iterator

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from cache import CacheClient, NullCache, build_cache
from config import get_settings
from database import (
    create_db_engine,
    make_session_factory,
    ping,
    upgrade_schema,
    wait_for_database,
)
from schemas import Analytics, CategoryOut, MessageOut, TransactionIn, TransactionOut
from services import CacheCoordinator, CategoryService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Transaction Service")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Origin", "Content-Type", "Accept"],
    expose_headers=["Content-Length"],
    max_age=int(timedelta(hours=12).total_seconds()),
)


@app.on_event("startup")
def startup_event():
    settings = get_settings()
    engine = create_db_engine(settings.database_url)
    wait_for_database(
        engine,
        attempts=settings.db_connect_attempts,
        delay=settings.db_connect_delay_secs,
    )
    upgrade_schema(engine)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.cache = build_cache(settings.cache_url, settings.cache_timeout_secs)

    session = app.state.session_factory()
    try:
        created = CategoryService(session).seed_defaults()
        logger.info(f"seed_categories: created={created}")
    except SQLAlchemyError as exc:
        logger.warning(f"seed_categories_failed: error={exc!r}")
    finally:
        session.close()


@app.on_event("shutdown")
def shutdown_event():
    cache = getattr(app.state, "cache", None)
    if cache is not None:
        cache.close()
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        engine.dispose()


@app.exception_handler(SQLAlchemyError)
def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"database_error: path={request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_session_factory(request: Request) -> sessionmaker[Session]:
    return request.app.state.session_factory


def get_db(
    factory: sessionmaker[Session] = Depends(get_session_factory),
) -> Iterator[Session]:
    db = factory()
    try:
        yield db
    finally:
        db.close()


def get_cache(request: Request) -> CacheClient:
    return getattr(request.app.state, "cache", None) or NullCache()


def get_coordinator(
    request: Request,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
) -> CacheCoordinator:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return CacheCoordinator(
        db,
        cache,
        transactions_ttl=settings.transactions_ttl_secs,
        analytics_ttl=settings.analytics_ttl_secs,
        window_days=settings.analytics_window_days,
    )


@app.get("/health")
def health_check(engine: Engine = Depends(get_engine)):
    try:
        ping(engine)
    except SQLAlchemyError as exc:
        return JSONResponse(
            status_code=500, content={"status": "unhealthy", "error": str(exc)}
        )
    return {"status": "healthy", "service": "transaction-service"}


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(coordinator: CacheCoordinator = Depends(get_coordinator)):
    return coordinator.transactions()


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn, coordinator: CacheCoordinator = Depends(get_coordinator)
):
    try:
        return coordinator.create_transaction(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/transactions/{transaction_id}", response_model=MessageOut)
def delete_transaction(
    transaction_id: int, coordinator: CacheCoordinator = Depends(get_coordinator)
):
    deleted = coordinator.delete_transaction(transaction_id)
    logger.info(f"transaction_delete: id={transaction_id} rows={deleted}")
    return MessageOut(message="Transaction deleted")


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.get("/api/analytics", response_model=Analytics)
def get_analytics(coordinator: CacheCoordinator = Depends(get_coordinator)):
    return coordinator.analytics()
