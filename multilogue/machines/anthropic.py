"""Anthropic Claude machine using anthropic SDK with native async."""

import logging
import os
import time
from collections.abc import Mapping
from typing import Any

import anthropic as anthropic_sdk

from config.config_loader import MachineSpec
from multilogue.machines.base import Machine, MachineError, fold_speakers, sampling_settings, thinking_budget

logger = logging.getLogger(__name__)


class AnthropicMachine(Machine):
    """Anthropic Claude machine via anthropic SDK."""

    def __init__(self, spec: MachineSpec) -> None:
        self._spec = spec
        api_key = os.environ.get(spec.api_key_env, "").strip()
        if not api_key:
            raise MachineError(spec.key, f"Missing API key: {spec.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._spec.key

    def model_string(self) -> str:
        return self._spec.model

    def _request_kwargs(self, messages: list[dict[str, str]], settings: Mapping[str, Any]) -> dict[str, Any]:
        system, converted = fold_speakers(messages, self._spec.name)
        if not converted:
            raise MachineError(self._spec.key, "Dialogue has no user or assistant turns")

        sampling = sampling_settings(self._spec.key, settings)
        kwargs: dict[str, Any] = {
            "model": str(settings.get("model") or self._spec.model),
            "max_tokens": sampling.pop("max_completion_tokens", self._spec.max_tokens),
            "messages": converted,
        }
        budget = thinking_budget(self._spec.key, settings)
        if budget is not None:
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": budget}
            # max_tokens covers thinking and answer together
            if kwargs["max_tokens"] <= budget:
                kwargs["max_tokens"] = budget + self._spec.max_tokens
            if sampling.pop("temperature", None) is not None:
                logger.warning("Anthropic %s: temperature is ignored with extended thinking", self._spec.key)
        kwargs.update(sampling)
        if system:
            kwargs["system"] = system
        return kwargs

    async def complete(self, messages: list[dict[str, str]], settings: Mapping[str, Any]) -> dict[str, Any]:
        kwargs = self._request_kwargs(messages, settings)

        start = time.monotonic()
        try:
            response = await self._client.messages.create(**kwargs)
        except Exception as exc:
            raise MachineError(self._spec.key, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        blocks = [block.model_dump() for block in response.content or []]
        text_blocks = [b for b in blocks if b.get("type") == "text"]
        thinking_blocks = [b for b in blocks if b.get("type") == "thinking"]

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.info("Anthropic %s: %.2fs, %s tokens", self._spec.key, latency, token_count)

        return {
            "role": response.role,
            "content": text_blocks,
            "reasoning_content": thinking_blocks,
        }

    async def close(self) -> None:
        await self._client.close()
