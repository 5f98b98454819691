import json
from datetime import timedelta

import httpx
import pytest

from activity_overview.config import Settings
from activity_overview.services.activity_log import ActivityLogEntry
from activity_overview.services.context import ActivityContext
from activity_overview.services.metrics import ActivityMetrics
from activity_overview.services.narrative import (
    GenerationError,
    LLMClient,
    NarrativeGenerator,
    build_fallback_highlight,
    build_quiet_period_highlight,
    enforce_character_limit,
    timeframe_label,
)

from factories import NOW, FakeGenerator


def _entries(count: int) -> list[ActivityLogEntry]:
    return [
        ActivityLogEntry(
            timestamp=NOW - timedelta(minutes=i),
            actor_display_name="Casey Admin",
            verb="TASK_UPDATED",
            summary=f"Updated task {i}",
            target_type="TASK",
        )
        for i in range(count)
    ]


class TestTimeframeLabel:
    def test_singular_day(self):
        assert timeframe_label(1) == "last 1 day"

    def test_plural_days(self):
        assert timeframe_label(28) == "last 28 days"


class TestQuietPeriod:
    def test_parameterised_by_timeframe(self):
        text = build_quiet_period_highlight(7)
        assert text.startswith("No activity logged during the last 7 days.")

    def test_differs_only_by_label(self):
        assert build_quiet_period_highlight(14).replace("14", "7") == build_quiet_period_highlight(7)


class TestFallbackHighlight:
    def test_all_counters_produce_three_sentences(self):
        metrics = ActivityMetrics(tasks_done=2, new_leads=1, active_projects=3, blocked_tasks=4)
        assert build_fallback_highlight(metrics, 10, 7) == (
            "2 tasks were accepted over the past 7 days. "
            "1 new lead came in, worth a look. "
            "4 tasks are currently blocked and may need attention."
        )

    def test_singular_forms(self):
        metrics = ActivityMetrics(tasks_done=1, blocked_tasks=1)
        assert build_fallback_highlight(metrics, 2, 1) == (
            "1 task was accepted over the past 1 day. "
            "1 task is currently blocked and may need attention."
        )

    def test_zero_counters_fall_back_to_log_count(self):
        metrics = ActivityMetrics(active_projects=5)
        assert build_fallback_highlight(metrics, 12, 14) == (
            "12 updates logged over the past 14 days. Activity is ticking along steadily."
        )

    def test_is_reproducible(self):
        metrics = ActivityMetrics(tasks_done=3, new_leads=2)
        assert build_fallback_highlight(metrics, 4, 7) == build_fallback_highlight(metrics, 4, 7)


class TestCharacterLimit:
    def test_short_text_is_only_trimmed(self):
        assert enforce_character_limit("  hello world \n", 400) == "hello world"

    def test_long_text_is_truncated_with_ellipsis(self):
        result = enforce_character_limit("x" * 500, 400)
        assert len(result) == 400
        assert result.endswith("…")

    def test_whitespace_before_ellipsis_is_dropped(self):
        text = "a" * 398 + "   " + "b" * 50
        result = enforce_character_limit(text, 400)
        assert result == "a" * 398 + "…"

    def test_exact_limit_is_kept(self):
        assert enforce_character_limit("y" * 400, 400) == "y" * 400


class TestNarrativeGenerator:
    metrics = ActivityMetrics(tasks_done=2, new_leads=1, active_projects=1, blocked_tasks=0)

    async def _highlight(self, generator, logs, **kwargs):
        narrative = NarrativeGenerator(generator, timeout=0.2, **kwargs)
        return await narrative.highlight(
            metrics=self.metrics, logs=logs, context=ActivityContext(), now=NOW,
            timeframe_days=7,
        )

    @pytest.mark.asyncio
    async def test_returns_generated_text(self):
        generator = FakeGenerator(text="  Big week for Apollo.  ")
        assert await self._highlight(generator, _entries(3)) == "Big week for Apollo."

    @pytest.mark.asyncio
    async def test_empty_window_skips_generation(self):
        generator = FakeGenerator()
        result = await self._highlight(generator, [])
        assert result == build_quiet_period_highlight(7)
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_error_uses_fallback(self):
        generator = FakeGenerator(error=GenerationError("boom"))
        result = await self._highlight(generator, _entries(3))
        assert result == build_fallback_highlight(self.metrics, 3, 7)

    @pytest.mark.asyncio
    async def test_empty_text_uses_fallback(self):
        generator = FakeGenerator(text="   ")
        result = await self._highlight(generator, _entries(3))
        assert result == build_fallback_highlight(self.metrics, 3, 7)

    @pytest.mark.asyncio
    async def test_timeout_uses_fallback(self):
        generator = FakeGenerator(delay=2.0)
        result = await self._highlight(generator, _entries(3))
        assert result == build_fallback_highlight(self.metrics, 3, 7)

    @pytest.mark.asyncio
    async def test_prompt_holds_at_most_fifty_entries(self):
        generator = FakeGenerator()
        await self._highlight(generator, _entries(120))
        system, prompt = generator.calls[0]
        lines = [line for line in prompt.splitlines() if line.startswith("{")]
        assert len(lines) == 50
        assert json.loads(lines[0])["summary"] == "Updated task 0"
        assert "- Tasks accepted: 2" in prompt
        assert "400 characters" in system


def _client(handler, **overrides) -> LLMClient:
    config = Settings(**overrides)
    return LLMClient(config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestLLMClient:
    @pytest.mark.asyncio
    async def test_ollama_sends_system_and_prompt(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": " Quiet but steady. "})

        client = _client(handler, LLM_PROVIDER="ollama")
        assert await client.complete("sys", "user") == "Quiet but steady."
        assert seen["url"].endswith("/api/generate")
        assert seen["body"]["system"] == "sys"
        assert seen["body"]["stream"] is False

    @pytest.mark.asyncio
    async def test_openai_chat_completion(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert request.headers["Authorization"] == "Bearer sk-test"
            assert [m["role"] for m in body["messages"]] == ["system", "user"]
            return httpx.Response(
                200, json={"choices": [{"message": {"content": "Leads are up."}}]}
            )

        client = _client(handler, LLM_PROVIDER="openai", OPENAI_API_KEY="sk-test")
        assert await client.complete("sys", "user") == "Leads are up."

    @pytest.mark.asyncio
    async def test_http_error_raises_generation_error(self):
        client = _client(lambda request: httpx.Response(503), LLM_PROVIDER="groq")
        with pytest.raises(GenerationError):
            await client.complete("sys", "user")

    @pytest.mark.asyncio
    async def test_unknown_provider(self):
        client = _client(lambda request: httpx.Response(200), LLM_PROVIDER="nope")
        with pytest.raises(GenerationError, match="Unknown LLM provider"):
            await client.complete("sys", "user")
