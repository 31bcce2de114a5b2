"""
Essay draft version chains.

A chain is every draft sharing a ``chain_id`` (the id of the draft that
started it). Versions are linear: a new version is only ever appended to the
chain head, gets ``parent.version + 1`` and becomes the single current draft
of the chain. At most ``settings.draft_retention_limit`` drafts are kept per
chain; the oldest are evicted before a new version is inserted.

Every mutation runs in one transaction on the caller's session and locks the
chain rows first, so a failure leaves the chain exactly as it was. The
database backs this up with a unique ``(chain_id, version)`` constraint and a
partial unique index allowing one current draft per chain; a concurrent
writer that slips past the lock surfaces as ``ConflictError``.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import ConflictError, EssayLabError, NotFoundError, PersistenceError, ValidationError
from .models import EssayDraft, EssayPrompt, EssayTopic, new_id
from .settings import settings

logger = logging.getLogger(__name__)


@contextmanager
def _transaction(db: Session) -> Iterator[Session]:
	try:
		yield db
		db.commit()
	except EssayLabError:
		db.rollback()
		raise
	except IntegrityError as exc:
		db.rollback()
		logger.warning("Draft chain write conflicted: %s", exc.orig)
		raise ConflictError("Draft was modified concurrently; reload and try again") from exc
	except SQLAlchemyError as exc:
		db.rollback()
		logger.exception("Draft persistence failed")
		raise PersistenceError("Failed to save draft") from exc


def _owned(db: Session, user_id: str, draft_id: str, *, message: str = "Draft not found") -> EssayDraft:
	row = db.execute(
		select(EssayDraft).where(EssayDraft.id == draft_id, EssayDraft.user_id == user_id)
	).scalar_one_or_none()
	if row is None:
		raise NotFoundError(message)
	return row


def _lock_chain(db: Session, user_id: str, chain_id: str) -> List[EssayDraft]:
	"""Load (and row-lock, where supported) every draft of a chain, newest first."""
	stmt = (
		select(EssayDraft)
		.where(EssayDraft.chain_id == chain_id, EssayDraft.user_id == user_id)
		.order_by(EssayDraft.created_at.desc(), EssayDraft.version.desc())
		.with_for_update()
	)
	return list(db.execute(stmt).scalars().all())


def _clear_current(db: Session, user_id: str, chain_id: str) -> None:
	db.execute(
		update(EssayDraft)
		.where(EssayDraft.chain_id == chain_id, EssayDraft.user_id == user_id, EssayDraft.is_current.is_(True))
		.values(is_current=False)
		.execution_options(synchronize_session="fetch")
	)


def _evict_oldest(db: Session, chain: List[EssayDraft], limit: int) -> List[str]:
	# chain is newest first; keep room for the version about to be inserted
	if len(chain) < limit:
		return []
	evicted = [d.id for d in chain[limit - 1:]]
	db.execute(
		delete(EssayDraft)
		.where(EssayDraft.id.in_(evicted))
		.execution_options(synchronize_session="fetch")
	)
	return evicted


def _check_references(db: Session, topic_id: Optional[str], prompt_id: Optional[str]) -> None:
	if topic_id and db.get(EssayTopic, topic_id) is None:
		raise ValidationError(f"Unknown topic_id {topic_id}")
	if prompt_id and db.get(EssayPrompt, prompt_id) is None:
		raise ValidationError(f"Unknown prompt_id {prompt_id}")


def save(
	db: Session,
	user_id: str,
	content: str,
	*,
	title: Optional[str] = None,
	topic_id: Optional[str] = None,
	prompt_id: Optional[str] = None,
	parent_draft_id: Optional[str] = None,
	retention_limit: Optional[int] = None,
) -> EssayDraft:
	"""Persist a draft as a new chain or as the next version of an existing one.

	Raises ``ValidationError`` for blank content, ``NotFoundError`` when the
	parent is missing or owned by someone else, ``ConflictError`` when the
	parent is no longer the chain head, and ``PersistenceError`` on any other
	database failure.
	"""
	if not (content or "").strip():
		raise ValidationError("Content is required")
	limit = retention_limit or settings.draft_retention_limit

	with _transaction(db):
		_check_references(db, topic_id, prompt_id)
		if not parent_draft_id:
			if prompt_id:
				# One active chain per prompt per user
				db.execute(
					update(EssayDraft)
					.where(EssayDraft.user_id == user_id, EssayDraft.prompt_id == prompt_id, EssayDraft.is_current.is_(True))
					.values(is_current=False)
					.execution_options(synchronize_session="fetch")
				)
			draft_id = new_id()
			draft = EssayDraft(
				id=draft_id,
				chain_id=draft_id,
				user_id=user_id,
				topic_id=topic_id,
				prompt_id=prompt_id,
				title=title,
				content=content,
				version=1,
				is_current=True,
			)
			db.add(draft)
			db.flush()
			logger.info("Started draft chain %s for user %s", draft_id, user_id)
			return draft

		parent = _owned(db, user_id, parent_draft_id, message="Parent draft not found")
		chain = _lock_chain(db, user_id, parent.chain_id)
		head = max(chain, key=lambda d: d.version)
		if head.id != parent.id:
			raise ConflictError(
				f"Draft {parent.id} is version {parent.version} but the latest is version {head.version}; save from the latest version"
			)

		parent_id, chain_id, parent_version = parent.id, parent.chain_id, parent.version
		inherited = {
			"topic_id": topic_id if topic_id is not None else parent.topic_id,
			"prompt_id": prompt_id if prompt_id is not None else parent.prompt_id,
			"title": title if title is not None else parent.title,
		}
		_clear_current(db, user_id, chain_id)
		evicted = _evict_oldest(db, chain, limit)
		if evicted:
			logger.info("Evicted %d old version(s) from chain %s: %s", len(evicted), chain_id, evicted)

		draft = EssayDraft(
			id=new_id(),
			chain_id=chain_id,
			user_id=user_id,
			content=content,
			version=parent_version + 1,
			is_current=True,
			# A retention limit of 1 evicts the parent itself
			parent_draft_id=None if parent_id in evicted else parent_id,
			**inherited,
		)
		db.add(draft)
		db.flush()
		logger.info("Saved version %d of chain %s", draft.version, draft.chain_id)
		return draft


def revert(db: Session, user_id: str, version_id: str) -> EssayDraft:
	"""Make ``version_id`` the current draft of its chain. Nothing else changes."""
	with _transaction(db):
		target = _owned(db, user_id, version_id, message="Version not found")
		_lock_chain(db, user_id, target.chain_id)
		_clear_current(db, user_id, target.chain_id)
		db.execute(
			update(EssayDraft)
			.where(EssayDraft.id == target.id)
			.values(is_current=True)
			.execution_options(synchronize_session="fetch")
		)
		logger.info("Reverted chain %s to version %d", target.chain_id, target.version)
	db.refresh(target)
	return target


def get_draft(db: Session, user_id: str, draft_id: str) -> EssayDraft:
	return _owned(db, user_id, draft_id)


def list_drafts(db: Session, user_id: str, *, current_only: bool = False) -> List[EssayDraft]:
	stmt = select(EssayDraft).where(EssayDraft.user_id == user_id)
	if current_only:
		stmt = stmt.where(EssayDraft.is_current.is_(True))
	stmt = stmt.order_by(EssayDraft.updated_at.desc(), EssayDraft.created_at.desc())
	return list(db.execute(stmt).scalars().all())


def list_versions(db: Session, user_id: str, draft_id: str) -> List[EssayDraft]:
	draft = _owned(db, user_id, draft_id)
	stmt = (
		select(EssayDraft)
		.where(EssayDraft.chain_id == draft.chain_id, EssayDraft.user_id == user_id)
		.order_by(EssayDraft.version.desc())
	)
	return list(db.execute(stmt).scalars().all())


def delete_draft(db: Session, user_id: str, draft_id: str) -> int:
	"""Delete a draft; deleting a chain root removes the whole chain.

	Returns the number of rows removed. When a non-root current version is
	deleted, the highest remaining version of the chain becomes current.
	"""
	with _transaction(db):
		draft = _owned(db, user_id, draft_id)
		chain_id, version, was_current = draft.chain_id, draft.version, bool(draft.is_current)
		chain = _lock_chain(db, user_id, chain_id)
		if draft.is_root:
			db.execute(
				delete(EssayDraft)
				.where(EssayDraft.chain_id == chain_id, EssayDraft.user_id == user_id)
				.execution_options(synchronize_session="fetch")
			)
			logger.info("Deleted chain %s (%d draft(s))", chain_id, len(chain))
			return len(chain)

		db.execute(
			delete(EssayDraft)
			.where(EssayDraft.id == draft_id)
			.execution_options(synchronize_session="fetch")
		)
		if was_current:
			top = db.execute(
				select(func.max(EssayDraft.version)).where(EssayDraft.chain_id == chain_id, EssayDraft.user_id == user_id)
			).scalar_one_or_none()
			if top is not None:
				db.execute(
					update(EssayDraft)
					.where(EssayDraft.chain_id == chain_id, EssayDraft.user_id == user_id, EssayDraft.version == top)
					.values(is_current=True)
					.execution_options(synchronize_session="fetch")
				)
		logger.info("Deleted version %d of chain %s", version, chain_id)
		return 1
