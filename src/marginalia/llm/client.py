"""Claude API client for highlight suggestions."""

from __future__ import annotations

import logging
import os
from typing import cast

import anthropic

from marginalia.llm.suggestions import Suggestion, parse_suggestions

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You help readers find the most quotable passages in a piece of writing. "
    "Reply with JSON only, in the form "
    '{"suggestions": [{"text": "<verbatim passage>", "reason": "<why>"}]}. '
    "Every text must be copied verbatim from the document."
)


class SuggestionClient:
    """Asks Claude for highlight suggestions.

    Uses the async Anthropic client for non-blocking API calls.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-sonnet-4-20250514",
        max_suggestions: int = 5,
    ) -> None:
        """Initialize the suggestion client.

        Args:
            api_key: Anthropic API key. If not provided, reads from ANTHROPIC_API_KEY.
            model: Model identifier to use.
            max_suggestions: Upper bound on suggestions requested per document.

        Raises:
            ValueError: If no API key is available.
        """
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError("API key required. Set ANTHROPIC_API_KEY or pass api_key.")

        self.model = model
        self.max_suggestions = max_suggestions
        self._client = anthropic.AsyncAnthropic(api_key=self.api_key)

    async def suggest(self, plain_text: str) -> list[Suggestion]:
        """Request suggestions for a document's plain text.

        Args:
            plain_text: The document's projection text.

        Returns:
            Parsed suggestions (untrusted; triage before use).

        Raises:
            ValueError: If Claude returns an empty, non-text or non-JSON response.
        """
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=1024,
            system=SYSTEM_PROMPT,
            messages=[
                {
                    "role": "user",
                    "content": (
                        f"Suggest up to {self.max_suggestions} passages to "
                        f"highlight.\n\n<document>\n{plain_text}\n</document>"
                    ),
                }
            ],
        )

        if not response.content:
            raise ValueError("Empty response from Claude API")

        first_block = response.content[0]
        if not isinstance(first_block, anthropic.types.TextBlock):
            raise ValueError(f"Unexpected response type: {first_block.type}")

        text = cast("str", first_block.text)
        suggestions = parse_suggestions(text)
        logger.info("Claude suggested %d highlight(s)", len(suggestions))
        return suggestions[: self.max_suggestions]
