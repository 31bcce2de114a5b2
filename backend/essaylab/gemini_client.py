from __future__ import annotations
import json
import logging
import re
import httpx
from typing import Any, Dict, Optional
from .errors import UpstreamError
from .settings import settings

logger = logging.getLogger(__name__)


def extract_json_object(text: str) -> Dict[str, Any]:
	"""Parse a JSON object out of a model reply (bare, fenced, or embedded)."""
	try:
		data = json.loads(text)
		if isinstance(data, dict):
			return data
	except Exception:
		pass
	code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
	if code_block:
		try:
			data = json.loads(code_block.group(1))
			if isinstance(data, dict):
				return data
		except Exception:
			pass
	first = text.find("{")
	last = text.rfind("}")
	if first != -1 and last != -1 and last > first:
		try:
			data = json.loads(text[first : last + 1])
			if isinstance(data, dict):
				return data
		except Exception:
			pass
	raise UpstreamError("AI service did not return valid JSON")


class GeminiClient:
	def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, model: Optional[str] = None, timeout: Optional[float] = None) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise UpstreamError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		timeout = timeout or settings.gemini_timeout_seconds
		self._client = httpx.AsyncClient(timeout=timeout)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		self._openrouter_api_key = settings.openrouter_api_key
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		if self._openrouter_api_key:
			self._fallback_client = httpx.AsyncClient(timeout=timeout)

	async def generate(self, prompt: str) -> str:
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
			data = r.json()
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as err:
			logger.warning("Gemini call to %s failed: %s", self.model, err)
			if self._fallback_client is None:
				raise UpstreamError(f"Gemini call failed: {err}") from err
			return await self._fallback_generate(prompt, err)

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_generate(self, prompt: str, primary_error: Exception) -> str:
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self._openrouter_model,
			"messages": [{"role": "user", "content": prompt}],
		}
		try:
			r = await self._fallback_client.post(
				self._openrouter_base_url,
				headers=headers,
				json=payload,
			)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except Exception as fallback_err:
			logger.error("OpenRouter fallback failed: %s", fallback_err)
			raise UpstreamError(
				f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
			) from fallback_err
