import os
import logging
from typing import Optional

import openai
from openai import AsyncOpenAI
from fastapi import status

logger = logging.getLogger(__name__)

OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-3.5-turbo")
ADVISOR_TIMEOUT_SECONDS = float(os.environ.get("ADVISOR_TIMEOUT_SECONDS", 10))
ADVISOR_MAX_TOKENS = int(os.environ.get("ADVISOR_MAX_TOKENS", 200))
ADVISOR_TEMPERATURE = 0.7


class AdvisorError(Exception):
    """The completion provider failed; `detail` is safe to show to the user."""

    def __init__(self, detail: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class ExternalAdvisor:
    """Chat-completion client used by the recommendation flow."""

    def __init__(self, api_key: str = OPENAI_API_KEY, model: str = OPENAI_MODEL,
                 timeout: float = ADVISOR_TIMEOUT_SECONDS, max_tokens: int = ADVISOR_MAX_TOKENS):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        if not self.api_key:
            raise AdvisorError("OpenAI API key not set. Set OPENAI_API_KEY environment variable.")

        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=ADVISOR_TEMPERATURE,
            )
        except openai.APITimeoutError:
            logger.error(f"OpenAI request timed out after {self.timeout}s")
            raise AdvisorError(
                "The recommendation service timed out. Try again shortly.",
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            )
        except openai.AuthenticationError as e:
            logger.error(f"OpenAI rejected the API key: {e}")
            raise AdvisorError("Invalid or missing OpenAI API key. Please check configuration.")
        except openai.RateLimitError as e:
            logger.error(f"OpenAI rate limit hit: {e}")
            raise AdvisorError("OpenAI rate limit exceeded. Try again shortly.")
        except openai.BadRequestError as e:
            logger.error(f"OpenAI rejected the request: {e}")
            raise AdvisorError("Bad request sent to OpenAI API. Check your prompt structure.")
        except openai.OpenAIError as e:
            logger.error(f"OpenAI request failed: {e}")
            raise AdvisorError(f"Failed to generate recommendations: {e}")

        return response.choices[0].message.content or ""


advisor = ExternalAdvisor()


def get_advisor() -> ExternalAdvisor:
    return advisor
