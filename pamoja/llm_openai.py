from typing import List, Dict, Optional
from openai import OpenAI
import openai as openai_pkg

from pamoja.errors import (
    ConfigurationError,
    ProviderError, RateLimited, AuthError, PermissionDenied,
    BadRequestError, UpstreamTimeout, Unavailable, UpstreamNetwork,
)
from pamoja.settings import OPENROUTER_BASE_URL


class OpenAILLM:
    """Chat completions over any OpenAI-compatible endpoint (OpenRouter by default)."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "openai/gpt-4o-mini",
        base_url: str | None = None,
        timeout: float = 30.0,
        client: OpenAI | None = None,
    ):
        if client is None and api_key:
            client = OpenAI(api_key=api_key, base_url=base_url or OPENROUTER_BASE_URL, timeout=timeout)
        self.client = client
        self.model = model

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict[str, str]] = None,
    ) -> str:
        if self.client is None:
            raise ConfigurationError("Completion provider API key is not configured")

        params = {}
        if temperature is not None:
            params["temperature"] = temperature
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
        if response_format is not None:
            params["response_format"] = response_format

        try:
            comp = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                **params,
            )
            return (comp.choices[0].message.content or "").strip()

        except openai_pkg.RateLimitError as e:
            raise RateLimited(str(e))
        except openai_pkg.AuthenticationError as e:
            raise AuthError(str(e))
        except openai_pkg.PermissionDeniedError as e:
            raise PermissionDenied(str(e))
        except openai_pkg.BadRequestError as e:
            raise BadRequestError(str(e))
        except openai_pkg.APITimeoutError as e:
            raise UpstreamTimeout(str(e))
        except openai_pkg.APIConnectionError as e:
            raise UpstreamNetwork(str(e))
        except openai_pkg.APIStatusError as e:
            sc = getattr(e, "status_code", None)
            if sc == 429: raise RateLimited(str(e))
            if sc == 401: raise AuthError(str(e))
            if sc == 403: raise PermissionDenied(str(e))
            if sc in (500, 502): raise Unavailable(str(e))
            if sc == 503: raise Unavailable(str(e))
            if sc == 504: raise UpstreamTimeout(str(e))
            raise ProviderError(str(e))
        except Exception as e:
            raise ProviderError(str(e))
