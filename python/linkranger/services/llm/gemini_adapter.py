"""Gemini generateContent adapter.

POST {GEMINI_BASE_URL}/{model}:generateContent with the key in the
x-goog-api-key header, never in the query string.

Request mapping: the system turn becomes systemInstruction, "assistant"
turns are sent as role "model", and sampling overrides go into
generationConfig under Gemini's camelCase names.

Reply mapping: text is the concatenation of the first candidate's text
parts; usage comes from usageMetadata. A reply without candidates, or one
stopped for safety, is a CONTENT_BLOCKED error.
"""

import httpx

from linkranger.services.llm.adapter import LLMAdapter
from linkranger.services.llm.errors import LLMError, LLMErrorClass
from linkranger.services.llm.types import LLMRequest, LLMResponse, LLMUsage, Turn

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
GEMINI_CONNECT_TIMEOUT_S = 10.0

BLOCKED_FINISH_REASONS = frozenset({"SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT"})

# LLMRequest attribute -> generationConfig key
_SAMPLING_FIELDS = (("temperature", "temperature"), ("top_p", "topP"), ("top_k", "topK"))


class GeminiAdapter(LLMAdapter):
    async def generate(
        self,
        req: LLMRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        response = await self._client.post(
            f"{GEMINI_BASE_URL}/{req.model_name}:generateContent",
            headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
            json=self._build_request_body(req),
            timeout=httpx.Timeout(timeout_s, connect=GEMINI_CONNECT_TIMEOUT_S),
        )
        response.raise_for_status()
        return self._parse_response(response.json())

    def _build_request_body(self, req: LLMRequest) -> dict:
        system_prompt = None
        contents = []
        for turn in req.messages:
            if turn.role == "system":
                system_prompt = turn.content
            else:
                contents.append(self._turn_to_content(turn))

        generation_config: dict = {"maxOutputTokens": req.max_tokens}
        for attr, key in _SAMPLING_FIELDS:
            value = getattr(req, attr)
            if value is not None:
                generation_config[key] = value

        body: dict = {"contents": contents, "generationConfig": generation_config}
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        return body

    def _turn_to_content(self, turn: Turn) -> dict:
        role = "model" if turn.role == "assistant" else turn.role
        return {"role": role, "parts": [{"text": turn.content}]}

    def _parse_response(self, data: dict) -> LLMResponse:
        candidates = data.get("candidates") or []
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason", "no candidates")
            raise LLMError(
                LLMErrorClass.CONTENT_BLOCKED,
                f"Gemini returned no candidates ({reason})",
                provider="gemini",
            )

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts", [])
        text = "".join(part["text"] for part in parts if "text" in part)
        if not text and candidate.get("finishReason") in BLOCKED_FINISH_REASONS:
            raise LLMError(
                LLMErrorClass.CONTENT_BLOCKED,
                f"Gemini stopped generation ({candidate['finishReason']})",
                provider="gemini",
            )

        usage = None
        usage_metadata = data.get("usageMetadata")
        if usage_metadata:
            usage = LLMUsage(
                prompt_tokens=usage_metadata.get("promptTokenCount"),
                completion_tokens=usage_metadata.get("candidatesTokenCount"),
                total_tokens=usage_metadata.get("totalTokenCount"),
            )

        # Gemini replies carry no request id
        return LLMResponse(text=text, usage=usage, provider_request_id=None)
