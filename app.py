# app.py
# ASGI entry point, e.g. `uvicorn app:app`
from src.http_service import app

__all__ = ["app"]
