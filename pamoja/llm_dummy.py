from typing import List, Dict, Optional

class DummyLLM:
    """Offline stand-in for local development, enabled with USE_DUMMY_LLM=1."""

    name = "dummy"

    def complete(self, messages: List[Dict[str, str]], temperature: Optional[float] = None,
                 max_tokens: Optional[int] = None, response_format: Optional[Dict[str, str]] = None) -> str:
        if response_format:
            # nothing is approved without a real moderator
            return ('{"isValid": false, "message": "Moderation is not available in offline mode.", '
                    '"category": "unrelated", "relevanceScore": 0}')
        question = messages[-1]["content"] if messages else ""
        return (
            f"Pamoja AI is running without a language model. You asked: “{question}”. "
            f"Please reach a health worker for advice until the assistant is configured."
        )
