# api/statementdesk/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from . import settings

DB_URL = settings.DB_URL
if not DB_URL:
    raise RuntimeError("DB_URL not set in config/.env")

# SQLite (tests, local runs) is shared between the request thread and the
# generation workers; everything else gets the normal pooled engine.
if DB_URL.startswith("sqlite"):
    engine = create_engine(
        DB_URL,
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
else:
    engine = create_engine(DB_URL, pool_pre_ping=True, future=True)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
