from fastapi import APIRouter

from .files import router as files_router

api_router = APIRouter()

# Include all routers with prefixes
api_router.include_router(files_router, prefix="/files", tags=["File Management"])
