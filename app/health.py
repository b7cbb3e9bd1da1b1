# app/health.py
from fastapi import APIRouter

from app.config import get_settings

router = APIRouter()

@router.get("/health")
def health():
    settings = get_settings()
    return {"ok": True, "service": settings.app_name, "currency": settings.currency}
