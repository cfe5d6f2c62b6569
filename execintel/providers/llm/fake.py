from __future__ import annotations

import re

from execintel.providers.llm.base import LLMCompletion


_SECTION_LINE = re.compile(r"^Section:\s*(?P<title>.+)$", re.MULTILINE)


class FakeLLMProvider:
    """Deterministic provider for tests and local development.

    The body is derived from the prompt's ``Section:`` line so every section gets
    distinct, stable markdown. Token usage is the word count of prompt and reply.
    """

    model = "fake-llm"

    def __init__(self, response: str | None = None) -> None:
        self._response = response
        self.calls: list[dict[str, str]] = []

    async def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMCompletion:
        _ = (max_tokens, temperature)
        self.calls.append({"system_prompt": system_prompt, "user_prompt": user_prompt})
        content = self._response if self._response is not None else _render(user_prompt)
        tokens = len(user_prompt.split()) + len(content.split())
        return LLMCompletion(content=content, total_tokens=tokens, model=self.model)


def _render(user_prompt: str) -> str:
    match = _SECTION_LINE.search(user_prompt)
    title = match.group("title").strip() if match else "Overview"
    return (
        f"## {title}\n\n"
        f"**{title}** remains on track for the period.\n\n"
        "- Share of voice up 12% against the prior period\n"
        "- Sentiment holding at 68% positive\n"
        "- Two emerging risks flagged for leadership review\n"
    )
