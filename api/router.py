from fastapi import APIRouter
from api.extraction import router as extraction_router

api_router = APIRouter()

# Mount the sub-routers
api_router.include_router(extraction_router)
