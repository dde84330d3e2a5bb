"""
System category seeding
"""
import logging
import uuid
from typing import Dict, List

from sqlalchemy.orm import Session

from budget_app.database.models import Category

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"

# name -> (icon, color)
SYSTEM_CATEGORIES: Dict[str, tuple] = {
    "Groceries": ("shopping-cart", "#4CAF50"),
    "Dining": ("utensils", "#FF9800"),
    "Gas & Fuel": ("gas-pump", "#FFC107"),
    "Transportation": ("car", "#2196F3"),
    "Utilities": ("bolt", "#9C27B0"),
    "Bills & Payments": ("file-invoice", "#3F51B5"),
    "Entertainment": ("film", "#E91E63"),
    "Shopping": ("shopping-bag", "#F44336"),
    "Healthcare": ("heartbeat", "#00BCD4"),
    "Health & Fitness": ("dumbbell", "#26A69A"),
    "Insurance": ("shield-alt", "#607D8B"),
    "Housing": ("home", "#795548"),
    "Travel": ("plane", "#5C6BC0"),
    "Education": ("graduation-cap", "#009688"),
    "Personal Care": ("spa", "#FF5722"),
    "Subscriptions": ("sync", "#673AB7"),
    "Gifts & Donations": ("gift", "#CDDC39"),
    "Income": ("dollar-sign", "#8BC34A"),
    "Other": ("ellipsis-h", "#9E9E9E"),
    UNCATEGORIZED: ("question", "#999999"),
}


def seed_system_categories(session: Session) -> List[Category]:
    """Create any missing system categories. Safe to call on every startup."""
    existing = {
        category.name: category
        for category in session.query(Category).filter(Category.is_system.is_(True)).all()
    }

    created = []
    for name, (icon, color) in SYSTEM_CATEGORIES.items():
        if name in existing:
            continue
        category = Category(
            id=str(uuid.uuid4()),
            user_id=None,
            name=name,
            icon=icon,
            color=color,
            is_system=True,
        )
        session.add(category)
        created.append(category)

    if created:
        session.flush()
        logger.info("Seeded %d system categories", len(created))
    return created
