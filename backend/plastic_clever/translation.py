from __future__ import annotations
import json
import logging
from typing import Any, Dict, Optional

import httpx

from .settings import settings

logger = logging.getLogger(__name__)

LANGUAGES = {
	"es": "Spanish",
	"fr": "French",
	"de": "German",
	"it": "Italian",
	"pt": "Portuguese",
	"nl": "Dutch",
	"ru": "Russian",
	"zh": "Chinese",
	"ko": "Korean",
	"ar": "Arabic",
	"id": "Indonesian",
	"el": "Greek",
	"cy": "Welsh",
}


class TranslationError(RuntimeError):
	pass


class GeminiClient:
	def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, model: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise TranslationError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=30, transport=transport)

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
		except httpx.HTTPError as err:
			raise TranslationError(f"Gemini request failed: {err}") from err
		try:
			data = r.json()
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (ValueError, KeyError, IndexError, TypeError) as err:
			raise TranslationError(f"Unexpected Gemini response: {r.text}") from err

	async def aclose(self) -> None:
		await self._client.aclose()


def _strip_fences(text: str) -> str:
	text = text.strip()
	if text.startswith("```"):
		text = text.split("\n", 1)[1] if "\n" in text else ""
		if text.rstrip().endswith("```"):
			text = text.rstrip()[:-3]
	return text.strip()


async def translate_requirement(client: GeminiClient, title: str, description: str, language: str) -> Dict[str, str]:
	"""Translate one requirement's title and description into ``language``."""
	name = LANGUAGES[language]
	prompt = (
		f"Translate the following school sustainability programme requirement into {name}. "
		"Keep the tone friendly and suitable for teachers. "
		'Respond with JSON only, in the form {"title": "...", "description": "..."}.\n\n'
		f"Title: {title}\nDescription: {description}"
	)
	raw = await client.generate(prompt)
	try:
		data = json.loads(_strip_fences(raw))
	except json.JSONDecodeError as err:
		raise TranslationError(f"Translation for {language} was not valid JSON") from err
	if not isinstance(data, dict) or not data.get("title"):
		raise TranslationError(f"Translation for {language} is missing a title")
	return {"title": str(data["title"]), "description": str(data.get("description") or description)}


async def translate_all(client: GeminiClient, title: str, description: str) -> Dict[str, Dict[str, str]]:
	"""Translate into every supported language, falling back to English per failed language."""
	out: Dict[str, Dict[str, str]] = {}
	for code in LANGUAGES:
		try:
			out[code] = await translate_requirement(client, title, description, code)
		except TranslationError as err:
			logger.warning("translation to %s failed, keeping English: %s", code, err)
			out[code] = {"title": title, "description": description}
	return out
