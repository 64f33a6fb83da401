from app.models.user import User
from app.models.catalog import Category, Product, ProductVariant, ProductImage
from app.models.audit import AuditLog

__all__ = [
    "User",
    "Category", "Product", "ProductVariant", "ProductImage",
    "AuditLog",
]
