from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint, text
from .db import Base


def new_id() -> str:
	return str(uuid.uuid4())


class AuthUser(Base):
	__tablename__ = "auth_users"
	# Primary key is username
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	email = Column(String(256), nullable=True)
	# "student" or "admin"
	role = Column(String(32), default="student", nullable=False)
	requests_used = Column(Integer, default=0, nullable=False)
	requests_limit = Column(Integer, default=1000, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# JWT "jti"; deleting the row revokes the token
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class EssayTopic(Base):
	__tablename__ = "essay_topics"
	id = Column(String(36), primary_key=True, default=new_id)
	name = Column(String(256), nullable=False)
	description = Column(Text, nullable=True)
	created_by = Column(String(128), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class EssayPrompt(Base):
	__tablename__ = "essay_prompts"
	id = Column(String(36), primary_key=True, default=new_id)
	topic_id = Column(String(36), ForeignKey("essay_topics.id", ondelete="CASCADE"), nullable=False, index=True)
	title = Column(String(512), nullable=False)
	description = Column(Text, nullable=True)
	created_by = Column(String(128), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class EssayDraft(Base):
	__tablename__ = "essay_drafts"
	__table_args__ = (
		UniqueConstraint("chain_id", "version", name="uq_essay_drafts_chain_version"),
		# At most one current draft per chain
		Index(
			"uq_essay_drafts_current_per_chain",
			"chain_id",
			unique=True,
			sqlite_where=text("is_current = 1"),
			postgresql_where=text("is_current = true"),
		),
	)

	id = Column(String(36), primary_key=True, default=new_id)
	user_id = Column(String(128), nullable=False, index=True)
	topic_id = Column(String(36), ForeignKey("essay_topics.id", ondelete="SET NULL"), nullable=True)
	prompt_id = Column(String(36), ForeignKey("essay_prompts.id", ondelete="SET NULL"), nullable=True, index=True)
	title = Column(String(512), nullable=True)
	content = Column(Text, nullable=False)
	version = Column(Integer, default=1, nullable=False)
	is_current = Column(Boolean, default=True, nullable=False)
	# Id of the first draft of the chain; survives eviction of that draft
	chain_id = Column(String(36), nullable=False, index=True)
	parent_draft_id = Column(String(36), ForeignKey("essay_drafts.id", ondelete="SET NULL"), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	@property
	def is_root(self) -> bool:
		return self.id == self.chain_id
