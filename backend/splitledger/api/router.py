"""
Main API router that includes all route modules.
"""
from fastapi import APIRouter
from splitledger.api.routes import users, expenses, group_expenses, debts, settlements

api_router = APIRouter()

# Include all route modules
api_router.include_router(users.router)
api_router.include_router(expenses.router)
api_router.include_router(group_expenses.router)
api_router.include_router(debts.router)
api_router.include_router(settlements.router)
