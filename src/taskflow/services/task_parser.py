"""Natural-language task parsing through an OpenAI-compatible chat endpoint."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..schemas.drafts import TaskDraft

logger = logging.getLogger(__name__)

PARSER_SYSTEM_PROMPT = """You turn a short task description into a structured task.

Analyze the task's scope, break complex work into subtasks with their own time
estimates, suggest tags and a category, pick a priority and ask clarifying
questions when important information is missing.

Respond with ONLY a JSON object of this shape:
{
  "title": "clear, concise task title",
  "category": "work/personal/shopping/etc",
  "dueDate": "ISO date string or null",
  "tags": ["tag1", "tag2"],
  "priority": "low/medium/high",
  "description": "detailed description or null",
  "timeEstimate": {"value": 30, "unit": "minutes" or "hours"},
  "subtasks": [
    {"title": "subtask", "description": "details",
     "timeEstimate": {"value": 15, "unit": "minutes"}}
  ],
  "clarifyingQuestions": ["question about missing information?"],
  "aiResponse": "a short friendly reply explaining the breakdown"
}"""

NOT_CONFIGURED_ERROR = "API key not configured"
QUOTA_ERROR = "AI processing unavailable (quota exceeded). Using basic task creation."
REQUEST_ERROR = "Error processing with AI. Using basic task creation."
PARSE_ERROR = "Error parsing AI response"

DEFAULT_AI_RESPONSE = (
    "I've added this task to your list. Let me know if you'd like to break it down further!"
)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _strip_code_fence(content: str) -> str:
    return _CODE_FENCE.sub("", content.strip())


class TaskParser:
    """Produce ``TaskDraft`` objects from free text.

    The parser never raises for model or transport problems: it returns a
    degraded draft whose title is the raw input and whose ``error`` explains
    what went wrong.
    """

    def __init__(self, settings: Settings):
        self._settings = settings

    @property
    def is_configured(self) -> bool:
        key = self._settings.parser_api_key
        return key is not None and bool(key.get_secret_value().strip())

    @property
    def _base_url(self) -> str:
        return str(self._settings.parser_base_url).rstrip("/")

    @property
    def _headers(self) -> dict[str, str]:
        key = self._settings.parser_api_key
        assert key is not None
        return {
            "Authorization": f"Bearer {key.get_secret_value()}",
            "Content-Type": "application/json",
        }

    def _payload(self, text: str) -> dict[str, Any]:
        return {
            "model": self._settings.parser_model,
            "messages": [
                {"role": "system", "content": PARSER_SYSTEM_PROMPT},
                {"role": "user", "content": f"Task: {text.strip()}"},
            ],
            "temperature": 0.3,
            "stream": False,
        }

    async def parse(self, text: str) -> TaskDraft:
        """Return a structured draft for ``text``."""

        if not self.is_configured:
            logger.info("Task parser has no API key, creating a basic task")
            return TaskDraft.degraded(
                text,
                NOT_CONFIGURED_ERROR,
                "I've added this as a basic task since I couldn't process it with AI at the moment.",
            )

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.parser_timeout, connect=5.0)
            ) as client:
                resp = await client.post(
                    f"{self._base_url}/chat/completions",
                    headers=self._headers,
                    json=self._payload(text),
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 429:
                logger.warning("Task parser rate limited, creating a basic task")
                return TaskDraft.degraded(text, QUOTA_ERROR)
            logger.error(f"Task parser request failed ({exc.response.status_code})")
            return TaskDraft.degraded(
                text,
                REQUEST_ERROR,
                "I've added this as a basic task. I'll be more helpful once AI processing is available again.",
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Task parser request failed: {exc}")
            return TaskDraft.degraded(
                text,
                REQUEST_ERROR,
                "I've added this as a basic task. I'll be more helpful once AI processing is available again.",
            )

        return self._draft_from_completion(text, data)

    def _draft_from_completion(self, text: str, data: Any) -> TaskDraft:
        try:
            content = data["choices"][0]["message"]["content"] or "{}"
            payload = json.loads(_strip_code_fence(content))
            if not isinstance(payload, dict):
                raise ValueError("completion is not a JSON object")
            payload["title"] = str(payload.get("title") or "").strip() or text.strip()
            payload["aiResponse"] = payload.get("aiResponse") or DEFAULT_AI_RESPONSE
            return TaskDraft.model_validate(payload)
        except (KeyError, IndexError, TypeError, ValueError, ValidationError) as exc:
            logger.error(f"Failed to parse task parser response: {exc}")
            return TaskDraft.degraded(
                text,
                PARSE_ERROR,
                "I'll add this as a basic task since I had trouble processing the AI response.",
            )


__all__ = ["TaskParser", "PARSER_SYSTEM_PROMPT"]
