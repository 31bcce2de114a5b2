"""Exceptions raised by the service layer.

Each carries the HTTP status it maps to; ``main`` renders them as
``{"error": message}``.
"""
from __future__ import annotations


class EssayLabError(Exception):
	status_code = 500
	default_message = "Internal server error"

	def __init__(self, message: str | None = None) -> None:
		self.message = message or self.default_message
		super().__init__(self.message)


class ValidationError(EssayLabError):
	status_code = 400
	default_message = "Validation failed"


class ForbiddenError(EssayLabError):
	status_code = 403
	default_message = "Forbidden"


class NotFoundError(EssayLabError):
	status_code = 404
	default_message = "Not found"


class ConflictError(EssayLabError):
	status_code = 409
	default_message = "Conflict"


class RateLimitError(EssayLabError):
	status_code = 429
	default_message = "Request limit reached"


class PersistenceError(EssayLabError):
	status_code = 500
	default_message = "Database operation failed"


class UpstreamError(EssayLabError):
	"""The AI completion service failed or returned something unusable."""
	status_code = 502
	default_message = "AI service unavailable"
