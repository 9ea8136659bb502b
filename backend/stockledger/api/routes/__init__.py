"""API routes."""

from fastapi import APIRouter

from stockledger.api.routes import audits, stock, transactions, warehouses

api_router = APIRouter()

api_router.include_router(warehouses.router, prefix="/warehouses", tags=["warehouses"])
# /stock/transactions and /stock/audits are mounted before the /stock collection
api_router.include_router(transactions.router, prefix="/stock/transactions", tags=["stock", "transactions"])
api_router.include_router(audits.router, prefix="/stock/audits", tags=["stock", "audits"])
api_router.include_router(stock.router, prefix="/stock", tags=["stock"])
