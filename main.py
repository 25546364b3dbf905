import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, time as day_time
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import analytics
from config import Config
from logger import setup_logger
from schemas import (
    Budget,
    BudgetComparison,
    BudgetCreate,
    BudgetUpdate,
    BudgetWithCategory,
    Category,
    CategoryCreate,
    CategorySpend,
    MonthlyExpense,
    Summary,
    Transaction,
    TransactionCreate,
    TransactionUpdate,
    TransactionWithCategory,
    WeeklySpend,
    naive_utc,
)
from storage import DuplicateRecordError, Storage, create_storage, utcnow

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logger("finance", Config.LOG_LEVEL)
    storage = create_storage()
    storage.initialize()
    app.state.storage = storage
    yield
    logger.info("Shutting down gracefully...")
    storage.close()


# FastAPI app
app = FastAPI(title="Personal Finance Tracker API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    if request.url.path.startswith("/api"):
        duration = (time.perf_counter() - start) * 1000
        logger.info("%s %s %s in %.0fms", request.method, request.url.path, response.status_code, duration)
    return response


# Error responses are always {"error": ...}
@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request data", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(DuplicateRecordError)
async def duplicate_error(request: Request, exc: DuplicateRecordError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"error": str(exc)})


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "Internal Server Error"})


# Dependencies
def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_now() -> datetime:
    return utcnow()


def parse_query_date(value: str, name: str, end_of_day: bool = False) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be an ISO date")
    if end_of_day and len(value) == 10:
        # a bare date as the upper bound covers that whole day
        parsed = datetime.combine(parsed.date(), day_time.max)
    return naive_utc(parsed)


# Public endpoints
@app.get("/")
def root():
    return {"message": "Personal Finance Tracker API is running"}


@app.get("/api/health")
def health(storage: Storage = Depends(get_storage)):
    return {"backend": "running", **storage.describe()}


# Category endpoints
@app.get("/api/categories", response_model=List[Category])
def list_categories(storage: Storage = Depends(get_storage)):
    return storage.list_categories()


@app.post("/api/categories", response_model=Category, status_code=status.HTTP_201_CREATED)
def create_category(category: CategoryCreate, storage: Storage = Depends(get_storage)):
    return storage.create_category(category)


# Transaction endpoints
@app.get("/api/transactions", response_model=List[TransactionWithCategory])
def list_transactions(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    category_id: Optional[int] = Query(None, alias="categoryId"),
    storage: Storage = Depends(get_storage),
):
    if start_date and end_date:
        return storage.list_transactions_by_date_range(
            parse_query_date(start_date, "startDate"),
            parse_query_date(end_date, "endDate", end_of_day=True),
        )
    if category_id is not None:
        return storage.list_transactions_by_category(category_id)
    return storage.list_transactions()


@app.get("/api/transactions/{tx_id}", response_model=Transaction)
def get_transaction(tx_id: int, storage: Storage = Depends(get_storage)):
    tx = storage.get_transaction(tx_id)
    if tx is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return tx


@app.post("/api/transactions", response_model=Transaction, status_code=status.HTTP_201_CREATED)
def create_transaction(tx: TransactionCreate, storage: Storage = Depends(get_storage)):
    return storage.create_transaction(tx)


@app.put("/api/transactions/{tx_id}", response_model=Transaction)
def update_transaction(tx_id: int, changes: TransactionUpdate, storage: Storage = Depends(get_storage)):
    tx = storage.update_transaction(tx_id, changes)
    if tx is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return tx


@app.delete("/api/transactions/{tx_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_transaction(tx_id: int, storage: Storage = Depends(get_storage)):
    if not storage.delete_transaction(tx_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Budgets
@app.get("/api/budgets", response_model=List[BudgetWithCategory])
def list_budgets(storage: Storage = Depends(get_storage)):
    return storage.list_budgets()


@app.get("/api/budgets/{budget_id}", response_model=Budget)
def get_budget(budget_id: int, storage: Storage = Depends(get_storage)):
    budget = storage.get_budget(budget_id)
    if budget is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    return budget


@app.post("/api/budgets", response_model=Budget, status_code=status.HTTP_201_CREATED)
def create_budget(budget: BudgetCreate, storage: Storage = Depends(get_storage)):
    return storage.create_budget(budget)


@app.put("/api/budgets/{budget_id}", response_model=Budget)
def update_budget(budget_id: int, changes: BudgetUpdate, storage: Storage = Depends(get_storage)):
    budget = storage.update_budget(budget_id, changes)
    if budget is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    return budget


@app.delete("/api/budgets/{budget_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_budget(budget_id: int, storage: Storage = Depends(get_storage)):
    if not storage.delete_budget(budget_id):
        raise HTTPException(status_code=404, detail="Budget not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Analytics: each route recomputes from a fresh snapshot
@app.get("/api/analytics/summary", response_model=Summary)
def analytics_summary(storage: Storage = Depends(get_storage), now: datetime = Depends(get_now)):
    try:
        return analytics.summarize(storage.list_transactions(), now)
    except Exception:
        logger.exception("Failed to compute analytics summary")
        raise HTTPException(status_code=500, detail="Failed to fetch analytics summary")


@app.get("/api/analytics/monthly-expenses", response_model=List[MonthlyExpense])
def analytics_monthly_expenses(
    year: Optional[int] = Query(None, ge=1000, le=9999),
    storage: Storage = Depends(get_storage),
    now: datetime = Depends(get_now),
):
    try:
        return analytics.monthly_expenses(storage.list_transactions(), year or now.year)
    except Exception:
        logger.exception("Failed to compute monthly expenses")
        raise HTTPException(status_code=500, detail="Failed to fetch monthly expenses")


@app.get("/api/analytics/category-breakdown", response_model=List[CategorySpend])
def analytics_category_breakdown(storage: Storage = Depends(get_storage), now: datetime = Depends(get_now)):
    try:
        return analytics.category_breakdown(storage.list_transactions(), storage.list_categories(), now)
    except Exception:
        logger.exception("Failed to compute category breakdown")
        raise HTTPException(status_code=500, detail="Failed to fetch category breakdown")


@app.get("/api/analytics/weekly-trend", response_model=List[WeeklySpend])
def analytics_weekly_trend(storage: Storage = Depends(get_storage), now: datetime = Depends(get_now)):
    try:
        return analytics.weekly_trend(storage.list_transactions(), now)
    except Exception:
        logger.exception("Failed to compute weekly trend")
        raise HTTPException(status_code=500, detail="Failed to fetch weekly trend")


@app.get("/api/analytics/budget-comparison", response_model=List[BudgetComparison])
def analytics_budget_comparison(storage: Storage = Depends(get_storage), now: datetime = Depends(get_now)):
    try:
        return analytics.budget_comparison(storage.list_budgets(), storage.list_transactions(), now)
    except Exception:
        logger.exception("Failed to compute budget comparison")
        raise HTTPException(status_code=500, detail="Failed to fetch budget comparison")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=Config.HOST, port=Config.PORT)
