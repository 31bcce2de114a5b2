from __future__ import annotations
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from .. import drafts
from ..db import get_db
from ..errors import ValidationError
from .auth import User, get_current_user

router = APIRouter(prefix="/essay-drafts", tags=["essay_drafts"])


class DraftOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: str
	user_id: str
	topic_id: Optional[str] = None
	prompt_id: Optional[str] = None
	title: Optional[str] = None
	content: str
	version: int
	is_current: bool
	chain_id: str
	parent_draft_id: Optional[str] = None
	created_at: datetime
	updated_at: datetime


class SaveDraftRequest(BaseModel):
	topic_id: Optional[str] = None
	prompt_id: Optional[str] = None
	title: Optional[str] = None
	content: Optional[str] = None
	parent_draft_id: Optional[str] = None


class RevertRequest(BaseModel):
	version_id: Optional[str] = None


@router.get("", response_model=List[DraftOut])
def list_drafts(current_only: bool = False, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return drafts.list_drafts(db, user.username, current_only=current_only)


@router.post("", response_model=DraftOut, status_code=201)
def save_draft(req: SaveDraftRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return drafts.save(
		db,
		user.username,
		req.content or "",
		title=req.title,
		topic_id=req.topic_id,
		prompt_id=req.prompt_id,
		parent_draft_id=req.parent_draft_id,
	)


@router.get("/versions", response_model=List[DraftOut])
def list_versions(
	draft_id: Optional[str] = Query(default=None),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	if not draft_id:
		raise ValidationError("Draft ID is required")
	return drafts.list_versions(db, user.username, draft_id)


@router.post("/versions", response_model=DraftOut)
def revert_version(req: RevertRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if not req.version_id:
		raise ValidationError("Version ID is required")
	return drafts.revert(db, user.username, req.version_id)


@router.get("/{draft_id}", response_model=DraftOut)
def get_draft(draft_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return drafts.get_draft(db, user.username, draft_id)


@router.delete("/{draft_id}")
def delete_draft(draft_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	removed = drafts.delete_draft(db, user.username, draft_id)
	return {"success": True, "deleted": removed}
