"""Tests for observability instrumentation.

Covers:
- Redaction utilities (hash_text, redact_text, safe_kv)
- Logging ContextVars (request_id, user_id, path, method, route_template)
- LLM router event emission (llm.request.started / finished / failed)
- No sensitive data in logs (prompt, api_key, page text)
"""

import httpx
import pytest
import respx

from linkranger.logging import (
    add_request_context,
    clear_request_context,
    set_request_context,
    set_route_template,
)
from linkranger.services.llm import LLMError, LLMRouter, LLMRequest, Turn
from linkranger.services.llm import router as router_module
from linkranger.services.llm.gemini_adapter import GEMINI_BASE_URL
from linkranger.services.llm.types import LLMCallContext, LLMOperation
from linkranger.services.redact import FORBIDDEN_KEYS, hash_text, redact_text, safe_kv

# ─── Redaction Unit Tests ────────────────────────────────────────────────


class TestHashText:
    def test_stable_output(self):
        assert hash_text("hello") == hash_text("hello")

    def test_different_inputs_differ(self):
        assert hash_text("hello") != hash_text("world")

    def test_returns_hex_string(self):
        """Output is a 64-char hex string (SHA-256)."""
        result = hash_text("test")
        assert len(result) == 64
        assert all(c in "0123456789abcdef" for c in result)


class TestRedactText:
    def test_full_redact(self):
        assert redact_text("sk-abc123", keep=0) == "***"

    def test_partial_redact(self):
        assert redact_text("sk-abc123", keep=4) == "sk-a***"

    def test_empty_string(self):
        assert redact_text("", keep=0) == "***"

    def test_keep_exceeds_length(self):
        assert redact_text("ab", keep=5) == "***"

    def test_masks_email(self):
        value = "reader@example.com"
        result = redact_text(value, keep=3)
        assert value not in result
        assert result == "rea***"


class TestSafeKv:
    """Tests for safe_kv log guard."""

    def test_allows_safe_keys(self):
        result = safe_kv(provider="gemini", model_name="gemini-2.0-flash", latency_ms=100)
        assert result == {"provider": "gemini", "model_name": "gemini-2.0-flash", "latency_ms": 100}

    def test_allows_redacted_suffix_keys(self):
        result = safe_kv(prompt_sha256="abc", content_length=42, title_chars=12)
        assert result == {"prompt_sha256": "abc", "content_length": 42, "title_chars": 12}

    @pytest.mark.parametrize("key", sorted(FORBIDDEN_KEYS))
    def test_forbidden_keys_blocked_in_test(self, key):
        with pytest.raises(ValueError, match="Forbidden log keys"):
            safe_kv(**{key: "some value"}, _env="test")

    def test_forbidden_keys_dropped_in_prod(self):
        result = safe_kv(provider="gemini", api_key="sk-abc123", _env="prod")
        assert result == {"provider": "gemini"}


# ─── ContextVar Tests ────────────────────────────────────────────────


class TestContextVars:
    def setup_method(self):
        clear_request_context()

    def teardown_method(self):
        clear_request_context()

    def test_path_and_method_injected(self):
        set_request_context("req-1", path="/generate-tags", method="POST")
        event_dict = add_request_context(None, "info", {})
        assert event_dict["path"] == "/generate-tags"
        assert event_dict["method"] == "POST"
        assert event_dict["request_id"] == "req-1"

    def test_user_id_injected(self):
        set_request_context("req-1", user_id="user-1")
        event_dict = add_request_context(None, "info", {})
        assert event_dict["user_id"] == "user-1"

    def test_route_template_injected(self):
        set_request_context("req-1")
        set_route_template("/ai-usage/check")
        event_dict = add_request_context(None, "info", {})
        assert event_dict["route_template"] == "/ai-usage/check"

    def test_explicit_fields_not_overwritten(self):
        set_request_context("req-1", user_id="user-1")
        event_dict = add_request_context(None, "info", {"user_id": "admin-1"})
        assert event_dict["user_id"] == "admin-1"

    def test_clear_clears_all(self):
        set_request_context("req-1", user_id="u", path="/test", method="GET")
        set_route_template("/test")
        clear_request_context()
        assert add_request_context(None, "info", {}) == {}


# ─── Log Capture Infrastructure ──────────────────────────────────────


class _RecordingLogger:
    """Stands in for a module-level structlog logger and keeps every event."""

    def __init__(self, events: list[dict]):
        self._events = events

    def _record(self, level: str, event: str, **kw) -> None:
        self._events.append({"event": event, "level": level, **kw})

    def info(self, event: str, **kw) -> None:
        self._record("info", event, **kw)

    def warning(self, event: str, **kw) -> None:
        self._record("warning", event, **kw)

    def error(self, event: str, **kw) -> None:
        self._record("error", event, **kw)


@pytest.fixture
def log_sink(monkeypatch):
    """Capture router log events into a list.

    Module loggers are cached after first use, so the router's logger is
    swapped directly rather than reconfiguring structlog.
    """
    events: list[dict] = []
    monkeypatch.setattr(router_module, "logger", _RecordingLogger(events))
    return events


def _events(sink: list[dict], name: str) -> list[dict]:
    return [e for e in sink if e.get("event") == name]


SECRET_PROMPT = "SECRET PAGE TEXT ABOUT SwiftUI"
API_KEY = "gk-super-secret-key"


def _request() -> LLMRequest:
    return LLMRequest(
        model_name="gemini-test",
        messages=[Turn(role="user", content=SECRET_PROMPT)],
        max_tokens=50,
    )


class TestRouterEvents:
    """LLM router events carry sizes and outcomes, never text or keys."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_success_emits_started_and_finished(self, log_sink):
        respx.post(f"{GEMINI_BASE_URL}/gemini-test:generateContent").mock(
            return_value=httpx.Response(
                200,
                json={
                    "candidates": [{"content": {"parts": [{"text": "SwiftUI,iOS"}]}}],
                    "usageMetadata": {
                        "promptTokenCount": 10,
                        "candidatesTokenCount": 3,
                        "totalTokenCount": 13,
                    },
                },
            )
        )

        async with httpx.AsyncClient() as client:
            await LLMRouter(client).generate(
                "gemini",
                _request(),
                API_KEY,
                call_context=LLMCallContext(LLMOperation.TAG_GENERATION, cache_key="abc"),
            )

        started = _events(log_sink, "llm.request.started")
        finished = _events(log_sink, "llm.request.finished")
        assert len(started) == 1
        assert started[0]["prompt_chars"] == len(SECRET_PROMPT)
        assert started[0]["llm_operation"] == "tag_generation"
        assert started[0]["cache_key"] == "abc"
        assert finished[0]["tokens_total"] == 13
        assert finished[0]["outcome"] == "success"

        rendered = repr(log_sink)
        assert SECRET_PROMPT not in rendered
        assert API_KEY not in rendered
        assert "SwiftUI,iOS" not in rendered

    @pytest.mark.asyncio
    @respx.mock
    async def test_failure_emits_failed_with_error_class(self, log_sink):
        respx.post(f"{GEMINI_BASE_URL}/gemini-test:generateContent").mock(
            return_value=httpx.Response(429, json={"error": {"status": "RESOURCE_EXHAUSTED"}})
        )

        async with httpx.AsyncClient() as client:
            with pytest.raises(LLMError):
                await LLMRouter(client).generate("gemini", _request(), API_KEY)

        failed = _events(log_sink, "llm.request.failed")
        assert len(failed) == 1
        assert failed[0]["error_class"] == "E_LLM_RATE_LIMIT"
        assert failed[0]["status_code"] == 429
        assert failed[0]["llm_operation"] == "other"
        assert API_KEY not in repr(log_sink)
