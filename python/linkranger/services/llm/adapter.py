"""Provider adapter interface.

An adapter turns an LLMRequest into one HTTP call and the reply into an
LLMResponse. It makes a single attempt, touches no database, logs nothing
and leaves transport and status errors unclassified for the router.
"""

from abc import ABC, abstractmethod

import httpx

from linkranger.services.llm.types import LLMRequest, LLMResponse


class LLMAdapter(ABC):
    def __init__(self, client: httpx.AsyncClient):
        # Shared with the rest of the app for connection pooling
        self._client = client

    @abstractmethod
    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        """Run one generation.

        Raises:
            httpx.HTTPStatusError: Non-2xx reply.
            httpx.TimeoutException: No reply within timeout_s.
            httpx.NetworkError: Connection failure.
            LLMError: 2xx reply the adapter could not use.
        """
