"""Completion gateway for an OpenAI-compatible chat/completions endpoint.

Wraps a single completion call with credential fallback, per-attempt
timeouts, exponential backoff inside a total wall-clock budget, early exit on
errors that retrying cannot fix, and one usage record per call.
"""

from __future__ import annotations

import asyncio
import math
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import unquote

import httpx

from copilot_bridge.ai.conversation import ReplyRequest, build_messages
from copilot_bridge.config import CompletionConfig
from copilot_bridge.log import get_logger
from copilot_bridge.storage.models import UsageRecord
from copilot_bridge.storage.usage_log import UsageLog

logger = get_logger(__name__)

COMMON_MODEL_CANDIDATES = ("gpt-4o", "gpt-4o-mini", "gpt-4.1", "gpt-4.1-mini", "gpt-5")
MAX_DISCOVERY_CANDIDATES = 20
PROBE_TIMEOUT = 12.0

_SHORT_ID = re.compile(r"^[a-z0-9][a-z0-9._-]*$", re.IGNORECASE)
_VERSIONED_ID = re.compile(r"/models/([^/]+)/versions/", re.IGNORECASE)


class CompletionError(Exception):
    """A generation did not produce text."""


class NonRetryableCompletionError(CompletionError):
    """A failure that another attempt cannot fix (credential, model, request size)."""


class CompletionDisabledError(CompletionError):
    """No credential is configured."""


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    trimmed = text.strip()
    if not trimmed:
        return 0
    return max(1, math.ceil(len(trimmed) / 4))


class CompletionGateway:
    """Turns a :class:`ReplyRequest` into model text with bounded retries."""

    def __init__(
        self,
        config: CompletionConfig,
        usage_log: UsageLog,
        default_model: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._config = config
        self._usage_log = usage_log
        self._default_model = default_model
        self._http = http_client or httpx.AsyncClient()
        self._clock = clock
        self._sleep = sleep

        if config.api_key:
            self._api_key, self._key_source = config.api_key, "api_key"
        elif config.github_token:
            self._api_key, self._key_source = config.github_token, "github_token"
        else:
            self._api_key, self._key_source = "", "none"

    @property
    def key_source(self) -> str:
        return self._key_source

    def is_enabled(self) -> bool:
        return bool(self._api_key)

    async def close(self) -> None:
        await self._http.aclose()

    # ── generation ──────────────────────────────────────────────

    async def generate_reply(self, request: ReplyRequest) -> str:
        """Generate a reply, retrying transient failures within the budget.

        Raises :class:`NonRetryableCompletionError` on the first hopeless
        response and :class:`CompletionError` once attempts or budget run out.
        """
        if not self.is_enabled():
            raise CompletionDisabledError(
                "A completion credential (api_key or github_token) is required for auto replies."
            )

        cfg = self._config
        model_id = request.model_id or self._default_model
        messages = build_messages(request)
        started = self._clock()
        last_error = "unknown error"
        attempts = 0

        for attempt in range(1, cfg.max_retries + 1):
            remaining = cfg.max_total_wait - (self._clock() - started)
            if remaining <= cfg.budget_safety_margin:
                last_error = f"request timeout budget exceeded ({cfg.max_total_wait}s)"
                break

            attempts = attempt
            try:
                text, payload = await self._post_completion(
                    model_id, messages, timeout=min(cfg.timeout, remaining)
                )
            except NonRetryableCompletionError as e:
                last_error = str(e)
                logger.warning("completion_non_retryable", model=model_id, attempt=attempt, error=last_error)
                self._record_failure(request, model_id, attempts, started, last_error)
                raise
            except (httpx.HTTPError, CompletionError) as e:
                last_error = str(e) or type(e).__name__
                logger.warning("completion_attempt_failed", model=model_id, attempt=attempt, error=last_error)
                if attempt >= cfg.max_retries:
                    break
                backoff = cfg.retry_base_delay * 2 ** (attempt - 1)
                if (self._clock() - started) + backoff >= cfg.max_total_wait:
                    break
                await self._sleep(backoff)
                continue

            usage = self._resolve_usage(payload, messages, text)
            self._usage_log.write(
                UsageRecord(
                    timestamp=_utc_now(),
                    model_id=model_id,
                    topic=request.topic,
                    agent=request.agent,
                    status="success",
                    attempt=attempt,
                    latency_ms=self._elapsed_ms(started),
                    prompt_tokens=usage.prompt_tokens,
                    completion_tokens=usage.completion_tokens,
                    total_tokens=usage.total_tokens,
                    estimated_cost_usd=self.estimate_cost_usd(usage.prompt_tokens, usage.completion_tokens),
                    request_id=payload.get("id"),
                )
            )
            return text

        self._record_failure(request, model_id, attempts, started, last_error)
        raise CompletionError(f"Completion failed after {attempts} attempt(s): {last_error}")

    async def _post_completion(
        self, model_id: str, messages: list[dict[str, Any]], timeout: float
    ) -> tuple[str, dict[str, Any]]:
        logger.debug("completion_request", model=model_id, timeout=timeout)
        response = await self._http.post(
            self._config.endpoint,
            headers=self._headers(),
            json={
                "model": model_id,
                "temperature": self._config.temperature,
                "messages": messages,
            },
            timeout=timeout,
        )

        if not response.is_success:
            body = response.text
            fatal = self._classify_failure(response.status_code, body, model_id)
            if fatal:
                raise fatal
            raise CompletionError(f"completion failed: {response.status_code} {body[:500]}")

        try:
            payload = response.json()
        except ValueError as e:
            raise CompletionError(f"completion returned invalid JSON: {e}") from e

        content = _extract_content(payload)
        if content is None:
            raise CompletionError("completion returned malformed payload")
        text = content.strip()
        if not text:
            raise CompletionError("completion returned empty content")
        return text, payload

    def _classify_failure(
        self, status: int, body: str, model_id: str
    ) -> NonRetryableCompletionError | None:
        lowered = body.lower()

        if status == 401 or (status == 403 and ("permission" in lowered or "models" in lowered)):
            hint = {
                "github_token": "The GITHUB_TOKEN in use needs the models read permission.",
                "api_key": "Check that the configured api_key may call the models endpoint.",
            }.get(self._key_source, "Configure an api_key or github_token with model access.")
            return NonRetryableCompletionError(
                f"completion non-retryable: credential lacks model access ({status}). {hint} "
                "Alternatively point completion.endpoint at an endpoint you can use and restart."
            )

        if status in (400, 404, 422):
            if "unknown_model" in lowered or "unknown model" in lowered:
                return NonRetryableCompletionError(f"completion non-retryable: unknown model {model_id}")
            if "context_length" in lowered or "max context" in lowered:
                return NonRetryableCompletionError("completion non-retryable: context length exceeded")
            if "invalid_request" in lowered or "invalid request" in lowered:
                return NonRetryableCompletionError("completion non-retryable: invalid request")

        return None

    def _record_failure(
        self, request: ReplyRequest, model_id: str, attempt: int, started: float, error: str
    ) -> None:
        self._usage_log.write(
            UsageRecord(
                timestamp=_utc_now(),
                model_id=model_id,
                topic=request.topic,
                agent=request.agent,
                status="failure",
                attempt=attempt,
                latency_ms=self._elapsed_ms(started),
                error=error,
            )
        )

    def _resolve_usage(
        self, payload: dict[str, Any], messages: list[dict[str, Any]], completion: str
    ) -> TokenUsage:
        usage = payload.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        prompt_text = "\n\n".join(m["content"] for m in messages)
        prompt_tokens = usage.get("prompt_tokens")
        if not isinstance(prompt_tokens, int):
            prompt_tokens = estimate_tokens(prompt_text)
        completion_tokens = usage.get("completion_tokens")
        if not isinstance(completion_tokens, int):
            completion_tokens = estimate_tokens(completion)
        total_tokens = usage.get("total_tokens")
        if not isinstance(total_tokens, int):
            total_tokens = prompt_tokens + completion_tokens
        return TokenUsage(prompt_tokens, completion_tokens, total_tokens)

    def estimate_cost_usd(self, prompt_tokens: int, completion_tokens: int) -> float:
        input_cost = prompt_tokens / 1_000_000 * self._config.price_input_per_1m
        output_cost = completion_tokens / 1_000_000 * self._config.price_output_per_1m
        return round(input_cost + output_cost, 8)

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}

    # ── model discovery ─────────────────────────────────────────

    async def discover_models(self, seed_ids: list[str]) -> list[str]:
        """Probe candidate model ids and return those that answer a tiny completion.

        Best effort: any failure just drops the candidate.
        """
        if not self.is_enabled():
            return []

        endpoint_ids = [
            short for short in (self.extract_short_id(i) for i in await self._fetch_endpoint_model_ids()) if short
        ]
        candidates: list[str] = []
        for raw in [*seed_ids, *COMMON_MODEL_CANDIDATES, *endpoint_ids]:
            item = raw.strip()
            if item and item not in candidates:
                candidates.append(item)
        candidates = candidates[:MAX_DISCOVERY_CANDIDATES]

        available = [model_id for model_id in candidates if await self._can_complete_with(model_id)]
        logger.info("model_discovery_done", candidates=len(candidates), available=len(available))
        return available

    @property
    def models_endpoint(self) -> str | None:
        trimmed = self._config.endpoint.rstrip("/")
        suffix = "/chat/completions"
        if not trimmed.lower().endswith(suffix):
            return None
        return trimmed[: -len(suffix)] + "/models"

    async def _fetch_endpoint_model_ids(self) -> list[str]:
        url = self.models_endpoint
        if not url:
            return []
        try:
            response = await self._http.get(url, headers=self._headers(), timeout=PROBE_TIMEOUT)
            if not response.is_success:
                return []
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("model_list_fetch_failed", error=str(e))
            return []

        if isinstance(data, dict):
            items = data.get("data") or []
        elif isinstance(data, list):
            items = data
        else:
            items = []
        return [item["id"] for item in items if isinstance(item, dict) and item.get("id")]

    async def _can_complete_with(self, model_id: str) -> bool:
        try:
            response = await self._http.post(
                self._config.endpoint,
                headers=self._headers(),
                json={
                    "model": model_id,
                    "temperature": 0,
                    "max_tokens": 4,
                    "messages": [{"role": "user", "content": "ping"}],
                },
                timeout=min(self._config.timeout, PROBE_TIMEOUT),
            )
        except httpx.HTTPError as e:
            logger.debug("model_probe_failed", model=model_id, error=str(e))
            return False
        return response.is_success

    @staticmethod
    def extract_short_id(raw_id: str) -> str | None:
        """Reduce registry-style ids (``.../models/<id>/versions/<n>``) to ``<id>``."""
        if not raw_id:
            return None
        if _SHORT_ID.match(raw_id):
            return raw_id
        match = _VERSIONED_ID.search(raw_id)
        if not match:
            return None
        candidate = unquote(match.group(1))
        return candidate if _SHORT_ID.match(candidate) else None


def _extract_content(payload: Any) -> Optional[str]:
    """Return ``choices[0].message.content``, or None when the payload has another shape."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if content is None:
        return ""
    return content if isinstance(content, str) else None

def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()
