"""
Payload builders for the generative service.

Both completion and vision requests go through the same ResilientCallExecutor;
this module only decides what the messages payload looks like.
"""

from __future__ import annotations

from typing import Any

from .executor import CallResult, ResilientCallExecutor


class GenerativeClient:
    """Text and image+text requests to a messages-style endpoint."""

    def __init__(
        self,
        executor: ResilientCallExecutor,
        model: str = "claude-sonnet-4-5-20250929",
        max_tokens: int = 2000,
        temperature: float = 0.7,
        vision_temperature: float = 0.5,
    ):
        self.executor = executor
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.vision_temperature = vision_temperature

    def _base_payload(self, options: dict[str, Any], default_temperature: float) -> dict[str, Any]:
        temperature = options.get("temperature")
        return {
            "model": options.get("model") or self.model,
            "max_tokens": options.get("max_tokens") or self.max_tokens,
            "temperature": default_temperature if temperature is None else temperature,
        }

    async def complete(self, prompt: str, system_prompt: str = "", **options: Any) -> CallResult:
        """
        Single-turn text completion.

        Options: model, max_tokens, temperature, max_retries, timeout_ms, on_retry.
        """
        payload = self._base_payload(options, self.temperature)
        if system_prompt:
            payload["system"] = system_prompt
        payload["messages"] = [{"role": "user", "content": prompt}]
        return await self.executor.execute(
            payload,
            max_retries=options.get("max_retries"),
            timeout_ms=options.get("timeout_ms"),
            on_retry=options.get("on_retry"),
        )

    async def vision(
        self,
        image_data: str,
        prompt: str,
        media_type: str = "image/jpeg",
        **options: Any,
    ) -> CallResult:
        """Image + text request; image_data is base64 encoded."""
        payload = self._base_payload(options, self.vision_temperature)
        if options.get("system_prompt"):
            payload["system"] = options["system_prompt"]
        payload["messages"] = [
            {
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {"type": "base64", "media_type": media_type, "data": image_data},
                    },
                    {"type": "text", "text": prompt},
                ],
            }
        ]
        return await self.executor.execute(
            payload,
            max_retries=options.get("max_retries"),
            timeout_ms=options.get("timeout_ms"),
            on_retry=options.get("on_retry"),
        )
