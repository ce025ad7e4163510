"""
Category API Endpoints.

Minimal per-user category management; ledger entries reference these.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.models.category import Category
from backend.app.models.ledger_enums import CategoryType
from backend.app.schemas.category import CategoryCreate, CategoryResponse

router = APIRouter(prefix="/categories", tags=["Categories"])


@router.post("", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(
    data: CategoryCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a category; names are unique per owner and type."""
    name = data.name.strip()
    existing = await db.execute(
        select(Category).where(
            Category.owner_id == current_user["user_id"],
            Category.name == name,
            Category.type == data.type
        )
    )
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Category '{name}' already exists"
        )

    category = Category(
        owner_id=current_user["user_id"],
        name=name,
        type=data.type,
        is_active=True
    )
    db.add(category)
    await db.commit()
    await db.refresh(category)

    return CategoryResponse.model_validate(category)


@router.get("", response_model=List[CategoryResponse])
async def list_categories(
    type: Optional[CategoryType] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the caller's active categories."""
    query = select(Category).where(
        Category.owner_id == current_user["user_id"],
        Category.is_active == True
    )
    if type is not None:
        query = query.where(Category.type == type)

    result = await db.execute(query.order_by(Category.name))
    return result.scalars().all()
