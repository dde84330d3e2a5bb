"""
Database Service Layer - record lookups returned as plain dicts

Used by the auth routes, which work with user records as dicts before
handing them to the response schemas.
"""
from typing import Optional, Dict, Any
from datetime import datetime
from sqlalchemy.orm import Session
import uuid
import logging

from budget_app.database.models import User as UserModel

logger = logging.getLogger(__name__)

TABLES = {
    "users": UserModel,
}


class DatabaseService:
    def __init__(self, session: Session):
        if session is None:
            raise ValueError("Session is required")
        self.session = session

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}")

    @staticmethod
    def as_dict(row) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        return {column.name: getattr(row, column.name) for column in row.__table__.columns}

    def find_one(self, table: str, criteria: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Return the first row whose columns equal every value in ``criteria``."""
        model = self._model(table)
        query = self.session.query(model)
        for column, value in criteria.items():
            if not hasattr(model, column):
                raise ValueError(f"{table} has no column {column}")
            query = query.filter(getattr(model, column) == value)
        return self.as_dict(query.first())

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(table)
        values = {"id": str(uuid.uuid4()), **values}
        if hasattr(model, "created_at"):
            values.setdefault("created_at", datetime.utcnow())

        row = model(**values)
        self.session.add(row)
        self.session.flush()
        logger.debug("Inserted %s row %s", table, row.id)
        return self.as_dict(row)


def get_db_service(session: Session) -> DatabaseService:
    return DatabaseService(session)
