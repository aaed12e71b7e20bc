# mentra/app/api/v1/router.py
from fastapi import APIRouter
from mentra.app.api.v1.endpoints import journal

api_router = APIRouter()
api_router.include_router(journal.router, prefix="/journal", tags=["journal"])
