from typing import Optional

from fastapi import APIRouter, Depends

from ..settings import settings
from .auth import User, get_optional_user

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
	return {"status": "ok"}


@router.get("/info")
def info(user: Optional[User] = Depends(get_optional_user)):
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"draft_retention_limit": settings.draft_retention_limit,
		"user": user.username if user else None,
	}
