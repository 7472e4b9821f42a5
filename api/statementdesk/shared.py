# api/statementdesk/shared.py
from pathlib import Path

# FastAPI / Starlette bits you commonly use
from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
)
from fastapi.templating import Jinja2Templates

# Pydantic
from pydantic import BaseModel, Field

# SQLAlchemy session type
from sqlalchemy.orm import Session

# Templates ship inside the package (statement PDF layout)
TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

# Single Jinja2Templates instance shared across services
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

# Re-export for convenience
__all__ = [
    "APIRouter",
    "Depends",
    "HTTPException",
    "Query",
    "BaseModel",
    "Field",
    "Session",
    "templates",
]
