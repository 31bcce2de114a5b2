from __future__ import annotations
import logging
import math
from typing import Any, Callable, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .. import drafts
from ..db import get_db
from ..errors import RateLimitError
from ..gemini_client import GeminiClient, extract_json_object
from ..models import AuthUser
from ..settings import settings
from .auth import User, get_current_user

router = APIRouter(prefix="/essay-drafts", tags=["feedback"])

logger = logging.getLogger(__name__)

CRITERIA = ("TR", "CC", "LR", "GRA")
# Essays longer than this are clipped before being sent to the model
MAX_ESSAY_CHARS = 8000

Level = Literal["5.0_or_below", "5.5_to_6.5", "7.0_or_above"]

_LEVEL_GUIDANCE: Dict[str, str] = {
	"5.0_or_below": (
		"Write all explanations in short, simple sentences using basic everyday vocabulary. "
		"Focus on the two or three most important problems only."
	),
	"5.5_to_6.5": (
		"Use natural, common academic vocabulary in explanations. "
		"Point out the main problems and show how to fix them with short examples."
	),
	"7.0_or_above": (
		"Give detailed, nuanced observations, including subtle issues of tone, precision and cohesion."
	),
}


class FeedbackRequest(BaseModel):
	level: Optional[Level] = None


class BandScore(BaseModel):
	criterion: str
	score: float
	feedback: str = ""


class FeedbackResponse(BaseModel):
	draft_id: str
	version: int
	overall_band: Optional[float] = None
	band_scores: List[BandScore] = []
	strengths: List[str] = []
	improvements: List[str] = []


def get_feedback_client() -> Callable[[], GeminiClient]:
	"""Client factory; the client is only built once the draft is known to exist."""
	return lambda: GeminiClient(model=settings.gemini_model_feedback or settings.gemini_model)


def overall_band(scores: List[float]) -> Optional[float]:
	"""Mean of the criterion scores rounded to the nearest half band (.25 and .75 round up)."""
	if not scores:
		return None
	mean = sum(scores) / len(scores)
	return math.floor(mean * 2 + 0.5) / 2


def _build_feedback_prompt(essay: str, level: Optional[str]) -> str:
	guidance = _LEVEL_GUIDANCE.get(level or "", "")
	return (
		"You are an expert IELTS Writing Task 2 examiner.\n"
		"Score the essay below on the four official criteria: TR (Task Response), CC (Coherence and Cohesion), "
		"LR (Lexical Resource), GRA (Grammatical Range and Accuracy). Each criterion gets a whole band from 0 to 9.\n"
		"Scores must be objective and based only on the official band descriptors.\n"
		+ (
			f"The student declared a target level of {level}. This only changes how you write explanations; it must never influence the scores.\n{guidance}\n"
			if level
			else ""
		)
		+ "\nReturn ONLY a JSON object with keys: band_scores (array of {criterion, score, feedback}), "
		"strengths (array of strings), improvements (array of strings).\n\n"
		f"Essay:\n{essay}"
	)


def _normalize_scores(raw: Any) -> List[BandScore]:
	out: List[BandScore] = []
	if not isinstance(raw, list):
		return out
	for item in raw:
		if not isinstance(item, dict):
			continue
		criterion = str(item.get("criterion", "")).upper().strip()
		if criterion not in CRITERIA:
			continue
		try:
			score = float(item.get("score"))
		except (TypeError, ValueError):
			continue
		out.append(BandScore(criterion=criterion, score=max(0.0, min(9.0, score)), feedback=str(item.get("feedback") or "")))
	return out


def _str_list(raw: Any) -> List[str]:
	if not isinstance(raw, list):
		return []
	return [str(x) for x in raw if str(x).strip()]


def _charge_request(db: Session, username: str) -> None:
	row = db.get(AuthUser, username)
	if row is None:
		return
	if row.requests_used >= row.requests_limit:
		raise RateLimitError("request limit reached")
	row.requests_used += 1
	db.commit()


@router.post("/{draft_id}/feedback", response_model=FeedbackResponse)
async def draft_feedback(
	draft_id: str,
	req: Optional[FeedbackRequest] = None,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	make_client: Callable[[], GeminiClient] = Depends(get_feedback_client),
):
	draft = drafts.get_draft(db, user.username, draft_id)
	client = make_client()
	try:
		_charge_request(db, user.username)
		essay = draft.content[:MAX_ESSAY_CHARS]
		model_out = await client.generate(_build_feedback_prompt(essay, req.level if req else None))
	finally:
		await client.aclose()
	data = extract_json_object(model_out)
	scores = _normalize_scores(data.get("band_scores"))
	logger.info("Feedback for draft %s v%d: %d criteria scored", draft.id, draft.version, len(scores))
	return FeedbackResponse(
		draft_id=draft.id,
		version=draft.version,
		overall_band=overall_band([s.score for s in scores]),
		band_scores=scores,
		strengths=_str_list(data.get("strengths")),
		improvements=_str_list(data.get("improvements")),
	)
