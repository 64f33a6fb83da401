from fastapi import APIRouter

from app.api.v1 import category_import

api_router = APIRouter()

api_router.include_router(category_import.router, prefix="/admin/categories", tags=["category-import"])
