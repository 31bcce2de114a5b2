from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import NotFoundError, ValidationError
from ..models import EssayPrompt, EssayTopic
from .auth import User, require_role

router = APIRouter(tags=["essay_topics"])

logger = logging.getLogger(__name__)


class TopicOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: str
	name: str
	description: Optional[str] = None
	created_by: Optional[str] = None
	created_at: datetime


class PromptOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: str
	topic_id: str
	title: str
	description: Optional[str] = None
	created_by: Optional[str] = None
	created_at: datetime


class CreateTopicRequest(BaseModel):
	name: Optional[str] = None
	description: Optional[str] = None


class CreatePromptRequest(BaseModel):
	topic_id: Optional[str] = None
	title: Optional[str] = None
	description: Optional[str] = None


@router.get("/essay-topics", response_model=List[TopicOut])
def list_topics(db: Session = Depends(get_db)):
	return db.execute(select(EssayTopic).order_by(EssayTopic.name.asc())).scalars().all()


@router.post("/essay-topics", response_model=TopicOut, status_code=201)
def create_topic(req: CreateTopicRequest, user: User = Depends(require_role("admin")), db: Session = Depends(get_db)):
	name = (req.name or "").strip()
	if not name:
		raise ValidationError("Name is required")
	row = EssayTopic(name=name, description=req.description, created_by=user.username)
	db.add(row)
	db.commit()
	db.refresh(row)
	return row


@router.delete("/essay-topics/{topic_id}")
def delete_topic(topic_id: str, user: User = Depends(require_role("admin")), db: Session = Depends(get_db)):
	"""Delete a topic with its prompts; drafts written for them keep their content and lose the link."""
	if db.get(EssayTopic, topic_id) is None:
		raise NotFoundError("Topic not found")
	db.execute(delete(EssayTopic).where(EssayTopic.id == topic_id))
	db.commit()
	logger.info("Topic %s deleted by %s", topic_id, user.username)
	return {"success": True}


@router.get("/essay-prompts", response_model=List[PromptOut])
def list_prompts(topic_id: Optional[str] = None, db: Session = Depends(get_db)):
	stmt = select(EssayPrompt)
	if topic_id:
		stmt = stmt.where(EssayPrompt.topic_id == topic_id)
	return db.execute(stmt.order_by(EssayPrompt.title.asc())).scalars().all()


@router.post("/essay-prompts", response_model=PromptOut, status_code=201)
def create_prompt(req: CreatePromptRequest, user: User = Depends(require_role("admin")), db: Session = Depends(get_db)):
	title = (req.title or "").strip()
	if not req.topic_id or not title:
		raise ValidationError("Topic ID and title are required")
	if db.get(EssayTopic, req.topic_id) is None:
		raise NotFoundError("Topic not found")
	row = EssayPrompt(topic_id=req.topic_id, title=title, description=req.description, created_by=user.username)
	db.add(row)
	db.commit()
	db.refresh(row)
	return row
