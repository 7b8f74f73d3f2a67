"""Gemini machine using google-genai SDK with native async."""

import logging
import os
import time
from collections.abc import Mapping
from typing import Any

from google import genai
from google.genai import types as genai_types

from config.config_loader import MachineSpec
from multilogue.machines.base import Machine, MachineError, fold_speakers, sampling_settings, thinking_budget

logger = logging.getLogger(__name__)


class GeminiMachine(Machine):
    """Google Gemini machine via google-genai SDK."""

    def __init__(self, spec: MachineSpec) -> None:
        self._spec = spec
        api_key = os.environ.get(spec.api_key_env, "").strip()
        if not api_key:
            raise MachineError(spec.key, f"Missing API key: {spec.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._spec.key

    def model_string(self) -> str:
        return self._spec.model

    def _generation_config(self, system: str, settings: Mapping[str, Any]) -> genai_types.GenerateContentConfig:
        sampling = sampling_settings(self._spec.key, settings)
        return genai_types.GenerateContentConfig(
            system_instruction=system or None,
            max_output_tokens=sampling.get("max_completion_tokens", self._spec.max_tokens),
            temperature=sampling.get("temperature"),
            top_p=sampling.get("top_p"),
            thinking_config=genai_types.ThinkingConfig(
                include_thoughts=True,
                thinking_budget=thinking_budget(self._spec.key, settings),
            ),
        )

    async def complete(self, messages: list[dict[str, str]], settings: Mapping[str, Any]) -> dict[str, Any]:
        system, turns = fold_speakers(messages, self._spec.name)
        contents = [
            genai_types.Content(
                role="model" if t["role"] == "assistant" else "user",
                parts=[genai_types.Part(text=t["content"])],
            )
            for t in turns
        ]
        if not contents:
            raise MachineError(self._spec.key, "Dialogue has no user or assistant turns")

        start = time.monotonic()
        try:
            response = await self._client.aio.models.generate_content(
                model=str(settings.get("model") or self._spec.model),
                contents=contents,
                config=self._generation_config(system, settings),
            )
        except Exception as exc:
            raise MachineError(self._spec.key, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        candidate = response.candidates[0] if response.candidates else None
        if candidate is None or candidate.content is None:
            raise MachineError(self._spec.key, "Response has no candidates")

        parts = candidate.content.parts or []
        answer = [{"text": p.text} for p in parts if p.text and not p.thought]
        thoughts = [{"text": p.text} for p in parts if p.text and p.thought]

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.info("Gemini %s: %.2fs, %s tokens", self._spec.key, latency, token_count)

        return {
            "role": candidate.content.role,
            "content": answer,
            "reasoning_content": thoughts,
        }
