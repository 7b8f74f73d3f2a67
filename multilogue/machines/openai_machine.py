"""OpenAI-compatible machine using the openai SDK (OpenAI, xAI Grok, DeepSeek)."""

import logging
import os
import re
import time
from collections.abc import Mapping
from typing import Any

from openai import AsyncOpenAI

from config.config_loader import MachineSpec
from multilogue.machines.base import Machine, MachineError, sampling_settings

logger = logging.getLogger(__name__)

_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


def _api_name(name: str) -> str:
    """Participant names may only use letters, digits, '_' and '-' on the wire."""
    return _NAME_UNSAFE.sub("_", name)[:64]


class OpenAIMachine(Machine):
    """Chat-completions machine via the openai SDK; ``base_url`` selects the vendor."""

    def __init__(self, spec: MachineSpec) -> None:
        self._spec = spec
        api_key = os.environ.get(spec.api_key_env, "").strip()
        if not api_key:
            raise MachineError(spec.key, f"Missing API key: {spec.api_key_env}")
        if spec.base_url:
            self._client = AsyncOpenAI(api_key=api_key, base_url=spec.base_url)
        else:
            self._client = AsyncOpenAI(api_key=api_key)

    def name(self) -> str:
        return self._spec.key

    def model_string(self) -> str:
        return self._spec.model

    def _request_kwargs(self, messages: list[dict[str, str]], settings: Mapping[str, Any]) -> dict[str, Any]:
        sampling = sampling_settings(self._spec.key, settings)
        kwargs: dict[str, Any] = {
            "model": str(settings.get("model") or self._spec.model),
            "messages": [
                {"role": m["role"], "name": _api_name(m["name"]), "content": m["content"]}
                for m in messages
            ],
            "max_completion_tokens": sampling.pop("max_completion_tokens", self._spec.max_tokens),
        }
        kwargs.update(sampling)
        return kwargs

    async def complete(self, messages: list[dict[str, str]], settings: Mapping[str, Any]) -> dict[str, Any]:
        start = time.monotonic()
        try:
            response = await self._client.chat.completions.create(**self._request_kwargs(messages, settings))
        except Exception as exc:
            raise MachineError(self._spec.key, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if choice is None:
            raise MachineError(self._spec.key, "Response has no choices")

        message = choice.message
        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.info("OpenAI-compatible %s: %.2fs, %s tokens", self._spec.key, latency, token_count)

        return {
            "role": message.role,
            "content": message.content,
            # DeepSeek and xAI reasoning models return their chain of thought here
            "reasoning_content": getattr(message, "reasoning_content", None),
        }

    async def close(self) -> None:
        await self._client.close()
