import json
import logging
from typing import Any, Dict, List, Optional

from pamoja.errors import ProviderError, ValidationError
from pamoja.prompts import MODERATION_TEMPLATE

logger = logging.getLogger(__name__)

CATEGORIES = {"health", "spam", "inappropriate", "offensive", "unrelated", "valid"}


class ModerationService:
    """Asks the completion provider whether community content is acceptable."""

    def __init__(self, llm: object) -> None:
        self.llm = llm

    @staticmethod
    def _context(question_context: Optional[str], previous_messages: Optional[List[str]]) -> str:
        parts = ""
        if question_context:
            parts += f'\nOriginal Question: "{question_context}"'
        if previous_messages:
            numbered = "\n".join(f"{i}. {m}" for i, m in enumerate(previous_messages, start=1))
            parts += f"\nPrevious Messages:\n{numbered}"
        return parts

    def moderate(self, content: str, question_context: Optional[str] = None,
                 previous_messages: Optional[List[str]] = None) -> Dict[str, Any]:
        if not (content or "").strip():
            raise ValidationError("Content is required")

        messages = [
            {"role": "system", "content": MODERATION_TEMPLATE.format(
                context=self._context(question_context, previous_messages))},
            {"role": "user", "content": f'Please analyze this content: "{content}"'},
        ]
        raw = self.llm.complete(messages, temperature=0, max_tokens=200,
                                response_format={"type": "json_object"})
        try:
            result = json.loads(raw)
        except ValueError:
            logger.warning("Moderation reply was not JSON: %.80s", raw)
            raise ProviderError("Failed to moderate content")
        if not isinstance(result, dict) or "isValid" not in result:
            raise ProviderError("Failed to moderate content")

        category = str(result.get("category") or ("valid" if result["isValid"] else "unrelated")).lower()
        try:
            score = float(result.get("relevanceScore", 0))
        except (TypeError, ValueError):
            score = 0.0
        return {
            "isValid": bool(result["isValid"]),
            "message": str(result.get("message") or ""),
            "category": category if category in CATEGORIES else "unrelated",
            "relevanceScore": min(max(score, 0.0), 1.0),
        }
