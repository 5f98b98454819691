import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

import httpx

from activity_overview.config import Settings, settings
from activity_overview.services.activity_log import ActivityLogEntry
from activity_overview.services.clock import iso_z
from activity_overview.services.context import ActivityContext, format_activity_entry
from activity_overview.services.metrics import ActivityMetrics

logger = logging.getLogger(__name__)

ELLIPSIS = "…"


class GenerationError(Exception):
    pass


class TextGenerator(Protocol):
    async def complete(self, system: str, prompt: str) -> str: ...


class LLMClient:
    """One-shot text generation against the configured provider."""

    def __init__(
        self,
        config: Settings = settings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(
            timeout=config.GENERATION_TIMEOUT_SECONDS
        )

    async def complete(self, system: str, prompt: str) -> str:
        provider = self._config.LLM_PROVIDER
        try:
            if provider == "ollama":
                response = await self._client.post(
                    f"{self._config.OLLAMA_BASE_URL}/api/generate",
                    json={
                        "model": self._config.OLLAMA_MODEL,
                        "system": system,
                        "prompt": prompt,
                        "stream": False,
                    },
                )
                response.raise_for_status()
                return (response.json().get("response") or "").strip()

            elif provider == "openai":
                return await self._chat_completion(
                    "https://api.openai.com/v1/chat/completions",
                    self._config.OPENAI_API_KEY,
                    self._config.OPENAI_MODEL,
                    system,
                    prompt,
                )

            elif provider == "groq":
                return await self._chat_completion(
                    "https://api.groq.com/openai/v1/chat/completions",
                    self._config.GROQ_API_KEY,
                    self._config.GROQ_MODEL,
                    system,
                    prompt,
                )

            else:
                raise GenerationError(f"Unknown LLM provider: {provider}")

        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(f"Generation failed: {exc}") from exc

    async def _chat_completion(
        self, url: str, api_key: str, model: str, system: str, prompt: str
    ) -> str:
        response = await self._client.post(
            url,
            headers={"Authorization": f"Bearer {api_key}"},
            json={
                "model": model,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            },
        )
        response.raise_for_status()
        return (response.json()["choices"][0]["message"]["content"] or "").strip()

    async def close(self) -> None:
        await self._client.aclose()


@dataclass(frozen=True)
class GenerationResult:
    text: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return bool(self.text)

    @classmethod
    def success(cls, text: str) -> "GenerationResult":
        return cls(text=text)

    @classmethod
    def failure(cls, reason: str) -> "GenerationResult":
        return cls(reason=reason)


def _plural(count: int, one: str, many: str) -> str:
    return one if count == 1 else many


def timeframe_label(timeframe_days: int) -> str:
    return f"last {timeframe_days} {_plural(timeframe_days, 'day', 'days')}"


def build_system_prompt(timeframe_days: int, limit: int) -> str:
    return " ".join([
        "You're a chief of staff writing a brief narrative CEO briefing.",
        f"Based on the {timeframe_label(timeframe_days)} of activity, write 2-3 casual "
        f"sentences (max {limit} characters total) that tell a story about what's "
        "happening in the business.",
        "Start with the most important headline, then add context or a secondary development.",
        "Focus on what matters: progress made, deals or leads, blockers requiring "
        "attention, or notable momentum.",
        "Be specific and mention actual project names or clients when they appear in the activity.",
        "Write conversationally, as if updating a busy executive over coffee.",
        "No markdown, no bullets, no headers. Just flowing prose.",
    ])


def build_user_prompt(
    *,
    timeframe_days: int,
    metrics: ActivityMetrics,
    formatted_logs: list[str],
    now: datetime,
    limit: int,
) -> str:
    return "\n".join([
        f"Today is {iso_z(now)}. Write a brief narrative summary for the "
        f"{timeframe_label(timeframe_days)}.",
        "",
        "Current metrics:",
        f"- Tasks accepted: {metrics.tasks_done}",
        f"- New leads: {metrics.new_leads}",
        f"- Active projects: {metrics.active_projects}",
        f"- Blocked tasks: {metrics.blocked_tasks}",
        "",
        "Recent activity (JSON lines):",
        *formatted_logs,
        "",
        f"Write 2-3 sentences (max {limit} chars) that tell the story of what "
        "happened. Start with the headline, add context.",
    ])


def build_quiet_period_highlight(timeframe_days: int) -> str:
    return (
        f"No activity logged during the {timeframe_label(timeframe_days)}. "
        "Things are quiet on the operations front, a good time to plan ahead "
        "or check in with the team."
    )


def build_fallback_highlight(
    metrics: ActivityMetrics, log_count: int, timeframe_days: int
) -> str:
    """Deterministic summary built from the counters alone."""
    window = f"the past {timeframe_days} {_plural(timeframe_days, 'day', 'days')}"
    sentences: list[str] = []

    if metrics.tasks_done > 0:
        noun = _plural(metrics.tasks_done, "task was", "tasks were")
        sentences.append(f"{metrics.tasks_done} {noun} accepted over {window}.")

    if metrics.new_leads > 0:
        noun = _plural(metrics.new_leads, "lead", "leads")
        sentences.append(f"{metrics.new_leads} new {noun} came in, worth a look.")

    if metrics.blocked_tasks > 0:
        noun = _plural(metrics.blocked_tasks, "task is", "tasks are")
        sentences.append(
            f"{metrics.blocked_tasks} {noun} currently blocked and may need attention."
        )

    if not sentences:
        return (
            f"{log_count} updates logged over {window}. "
            "Activity is ticking along steadily."
        )
    return " ".join(sentences)


def enforce_character_limit(text: str, limit: int) -> str:
    trimmed = text.strip()
    if len(trimmed) <= limit:
        return trimmed
    return trimmed[: limit - 1].rstrip() + ELLIPSIS


class NarrativeGenerator:
    def __init__(
        self,
        generator: TextGenerator,
        *,
        timeout: float = settings.GENERATION_TIMEOUT_SECONDS,
        prompt_entries: int = settings.MAX_PROMPT_ENTRIES,
        limit: int = settings.HIGHLIGHT_CHARACTER_LIMIT,
        company_label: str = settings.COMPANY_GENERAL_LABEL,
    ) -> None:
        self._generator = generator
        self._timeout = timeout
        self._prompt_entries = prompt_entries
        self._limit = limit
        self._company_label = company_label

    async def _generate(self, system: str, prompt: str) -> GenerationResult:
        try:
            text = await asyncio.wait_for(
                self._generator.complete(system, prompt), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            return GenerationResult.failure(f"timed out after {self._timeout:.0f}s")
        except Exception as exc:
            return GenerationResult.failure(str(exc) or exc.__class__.__name__)
        text = (text or "").strip()
        if not text:
            return GenerationResult.failure("empty response")
        return GenerationResult.success(text)

    async def highlight(
        self,
        *,
        metrics: ActivityMetrics,
        logs: list[ActivityLogEntry],
        context: ActivityContext,
        now: datetime,
        timeframe_days: int,
    ) -> str:
        if not logs:
            return build_quiet_period_highlight(timeframe_days)

        formatted = [
            format_activity_entry(entry, context, self._company_label)
            for entry in logs[: self._prompt_entries]
        ]
        result = await self._generate(
            build_system_prompt(timeframe_days, self._limit),
            build_user_prompt(
                timeframe_days=timeframe_days,
                metrics=metrics,
                formatted_logs=formatted,
                now=now,
                limit=self._limit,
            ),
        )
        if result.ok:
            return result.text

        logger.warning(
            "Highlight generation failed (%s); using deterministic fallback",
            result.reason,
        )
        return build_fallback_highlight(metrics, len(logs), timeframe_days)
