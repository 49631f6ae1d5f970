from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from storefront.core.errors import ProductNotFound
from storefront.core.models import ProductResponse
from storefront.data.database import get_db
from storefront.data.models import Product

router = APIRouter(prefix="/api/products", tags=["catalog"])

@router.get("/", response_model=List[ProductResponse])
async def list_products(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Product).order_by(Product.name).offset((page - 1) * limit).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()

@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(product_id: UUID, db: AsyncSession = Depends(get_db)):
    product = await db.get(Product, product_id)
    if not product:
        raise ProductNotFound()
    return product
