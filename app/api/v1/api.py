from fastapi import APIRouter

from app.api.v1.routes import goals, group_goals, transactions, vaults

api_router = APIRouter()

api_router.include_router(goals.router)
api_router.include_router(group_goals.router)
api_router.include_router(transactions.router)
api_router.include_router(vaults.router)
