from fastapi import APIRouter

from app.api.v1.credits import router as credits_router
from app.api.v1.payouts import router as payouts_router
from app.api.v1.sessions import router as sessions_router

api_router = APIRouter()
api_router.include_router(sessions_router)
api_router.include_router(payouts_router)
api_router.include_router(credits_router)
