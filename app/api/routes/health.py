"""Health check route."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db

router = APIRouter()


@router.get("/health")
def health_check(db: Session = Depends(get_db)) -> dict[str, str]:
    """Report service and database health."""
    db.execute(text("SELECT 1"))
    return {"status": "healthy", "version": settings.VERSION, "database": "ok"}
