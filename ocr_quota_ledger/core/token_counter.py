"""
Token counting and usage tracking.

Normalizes token counts reported by the recognition service.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.

    Contains exact token counts as reported by the service.
    """
    prompt_tokens: int
    output_tokens: int

    def __post_init__(self):
        if self.prompt_tokens < 0 or self.output_tokens < 0:
            raise ValueError("token counts cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + output)."""
        return self.prompt_tokens + self.output_tokens

    @classmethod
    def from_response_usage(cls, usage: Any) -> "TokenUsage":
        """Build from an OpenAI ``response.usage`` object.

        A missing usage block counts as zero tokens.
        """
        if usage is None:
            return cls(prompt_tokens=0, output_tokens=0)
        return cls(
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
