"""
Best-effort conversation titling.
"""

import logging
from typing import Optional

import httpx

from perplexsearch.chat.postprocess import clean_title
from perplexsearch.config import Settings, get_settings
from perplexsearch.errors import ChatError
from perplexsearch.llm.perplexity_provider import PerplexityProvider

logger = logging.getLogger(__name__)

TITLE_PROMPT = (
    "Generate a 3-5 word title for a conversation that starts with the "
    "following question. Reply with the title only."
)


class AutoTitler:
    """Asks the titling model for a short title based on the first query."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or get_settings()
        self.transport = transport

    async def generate_title(self, query: str, api_key: str) -> Optional[str]:
        """
        Return a cleaned title, or None on any failure.

        Failures are logged and swallowed; callers keep their default title.
        """
        provider = PerplexityProvider(
            api_key=api_key,
            base_url=self.config.perplexity_base_url,
            timeout=self.config.request_timeout,
            transport=self.transport,
        )
        try:
            response = await provider.generate(
                [
                    {"role": "system", "content": TITLE_PROMPT},
                    {"role": "user", "content": query},
                ],
                self.config.title_model,
            )
        except (ChatError, httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Auto-title failed: {e}")
            return None

        title = clean_title(response.content or "")
        return title or None
