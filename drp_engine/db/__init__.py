"""SQLAlchemy persistence for the DRP engine."""

from .models import Base, SessionLocal, engine, init_db
from .repository import SqlDataSource
from .minimum_stock import MinimumStockRepository

__all__ = ["Base", "SessionLocal", "engine", "init_db", "SqlDataSource", "MinimumStockRepository"]
