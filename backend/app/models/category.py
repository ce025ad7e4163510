"""
Category database model.

Ledger entries must reference a category of the same owner and, except
for transfers, of the same type.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.ledger_enums import CategoryType


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("owner_id", "name", "type", name="uq_category_owner_name_type"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(Integer, nullable=False, index=True)

    name = Column(String(50), nullable=False)
    type = Column(Enum(CategoryType), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}', type='{self.type}')>"
