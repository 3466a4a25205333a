"""Catalog service API built with FastAPI.

This module exposes endpoints to check service health, read a product's
name/price/stock, seed products, and move stock. Validation is performed
with Pydantic models, while persistence and the atomic stock updates are
delegated to the SQLAlchemy-backed repository in ``repo.CatalogRepo``.
"""

import logging
import time
import uuid
from typing import Annotated, Optional

from fastapi import FastAPI, HTTPException, Path, Request
from pydantic import BaseModel, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import CatalogRepo, engine, init_db

app = FastAPI(title="Catalog Service")

ProductId = Annotated[str, Path(pattern=r"^[A-Z0-9_-]{3,32}$")]

# logger JSON
logger = logging.getLogger("catalog")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # brief active wait until the DB accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class ProductIn(BaseModel):
    """Body for creating or replacing a product."""
    name: str = Field(min_length=1, max_length=255)
    price_cents: int = Field(ge=0)
    stock: int = Field(ge=0)


class ProductOut(BaseModel):
    id: str
    name: str
    price_cents: int
    stock: int


class StockMove(BaseModel):
    """Body for a stock movement.

    Attributes:
        quantity: Positive number of units to take or give back.
        move_key: Optional caller key; a move repeated with the same key
            replays its first outcome.
    """
    quantity: int = Field(gt=0)
    move_key: Optional[str] = Field(default=None, min_length=1, max_length=120)


class ReverseMove(BaseModel):
    quantity: int = Field(gt=0)
    move_key: str = Field(min_length=1, max_length=120)


class ReverseResponse(BaseModel):
    restored: bool


class StockMoveResponse(BaseModel):
    decremented: bool = False
    incremented: bool = False
    stock: int


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/products/{product_id}", response_model=ProductOut)
def get_product(product_id: ProductId):
    obj = CatalogRepo().get(product_id)
    if obj is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return ProductOut(id=obj.id, name=obj.name, price_cents=obj.price_cents, stock=obj.stock)


@app.put("/products/{product_id}", response_model=ProductOut)
def put_product(product_id: ProductId, body: ProductIn):
    obj = CatalogRepo().upsert(product_id, body.name, body.price_cents, body.stock)
    return ProductOut(id=obj.id, name=obj.name, price_cents=obj.price_cents, stock=obj.stock)


@app.post("/products/{product_id}/decrement", response_model=StockMoveResponse)
def decrement(product_id: ProductId, move: StockMove):
    """Take stock for one order line.

    Raises:
        HTTPException: 404 for an unknown product, 422 with
            INSUFFICIENT_STOCK when fewer than ``quantity`` units remain.
    """
    repo = CatalogRepo()
    remaining = repo.decrement_if_available(product_id, move.quantity, move.move_key)
    if remaining is None:
        if repo.get(product_id) is None:
            raise HTTPException(status_code=404, detail="NOT_FOUND")
        raise HTTPException(status_code=422, detail={"decremented": False, "detail": "INSUFFICIENT_STOCK"})
    return StockMoveResponse(decremented=True, stock=remaining)


@app.post("/products/{product_id}/increment", response_model=StockMoveResponse)
def increment(product_id: ProductId, move: StockMove):
    stock = CatalogRepo().increment(product_id, move.quantity, move.move_key)
    if stock is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return StockMoveResponse(incremented=True, stock=stock)


@app.post("/products/{product_id}/reverse", response_model=ReverseResponse)
def reverse(product_id: ProductId, move: ReverseMove):
    """Undo a keyed decrement whose outcome the caller never learned."""
    restored = CatalogRepo().reverse_decrement(product_id, move.quantity, move.move_key)
    logger.info("stock move reversed", extra={"product_id": product_id, "move_key": move.move_key,
                                              "restored": restored})
    return ReverseResponse(restored=restored)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
