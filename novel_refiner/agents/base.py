"""Base agent with API routing for Gemini and Qwen."""

import time
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from ..budget import ContextBudgetManager
from ..config import LLMConfig
from ..errors import ResourceExceeded
from ..utils.text import parse_json_response


@dataclass
class AgentLog:
    agent_name: str = ""
    action: str = ""
    prompt_preview: str = ""
    response_preview: str = ""
    elapsed_seconds: float = 0.0


class BaseAgent:
    """Base class for LLM-backed collaborators.

    Every call is size-checked against the budget first, so an oversized
    prompt raises ResourceExceeded before anything is sent. Transient API
    failures are retried ``llm.max_retries`` times.
    """

    def __init__(
        self,
        name: str,
        llm_config: LLMConfig,
        budget: Optional[ContextBudgetManager] = None,
    ):
        self.name = name
        self.llm_config = llm_config
        self.budget = budget or ContextBudgetManager()
        self.logs: list[AgentLog] = []

    def call(
        self,
        system: str,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Send a prompt to the configured provider."""
        tokens = self.budget.estimate_tokens(system) + self.budget.estimate_tokens(prompt)
        safe, warning = self.budget.is_context_safe(tokens)
        if not safe:
            raise ResourceExceeded(tokens, self.budget.config.max_safe_tokens)
        if warning:
            logger.warning(f"{self.name}: {warning}")

        send = self.call_qwen if self.llm_config.provider == "qwen" else self.call_gemini
        attempts = self.llm_config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return send(system, prompt, temperature, max_tokens)
            except Exception as e:
                if attempt == attempts:
                    raise
                logger.warning(
                    f"{self.name}: {self.llm_config.provider} call failed "
                    f"(attempt {attempt}/{attempts}): {e}"
                )
                time.sleep(self.llm_config.retry_delay * attempt)

    def call_gemini(
        self,
        system: str,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Call Gemini API via google-genai SDK."""
        from google import genai
        from google.genai import types

        cfg = self.llm_config
        start = time.time()
        client = genai.Client(api_key=cfg.api_key)
        response = client.models.generate_content(
            model=cfg.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system,
                temperature=temperature or cfg.temperature,
                max_output_tokens=max_tokens or cfg.max_output_tokens,
            ),
        )
        result = response.text
        self._log("call_gemini", prompt, result, time.time() - start)
        return result

    def call_qwen(
        self,
        system: str,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Call Qwen API via OpenAI-compatible DashScope endpoint."""
        from openai import OpenAI

        cfg = self.llm_config
        start = time.time()
        client = OpenAI(api_key=cfg.api_key, base_url=cfg.base_url)
        response = client.chat.completions.create(
            model=cfg.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature or cfg.temperature,
            max_tokens=max_tokens or cfg.max_output_tokens,
        )
        result = response.choices[0].message.content
        self._log("call_qwen", prompt, result, time.time() - start)
        return result

    def call_json(
        self,
        system: str,
        prompt: str,
        temperature: float | None = None,
    ) -> dict:
        """Call the provider and parse JSON from the response."""
        raw = self.call(
            system + "\n\nRespond with valid JSON only.",
            prompt,
            temperature=temperature,
        )
        return parse_json_response(raw)

    def _log(
        self, action: str, prompt: str, response: str, elapsed: float
    ) -> None:
        self.logs.append(
            AgentLog(
                agent_name=self.name,
                action=action,
                prompt_preview=prompt[:200],
                response_preview=response[:200] if response else "",
                elapsed_seconds=round(elapsed, 2),
            )
        )
