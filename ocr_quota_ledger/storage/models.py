"""
Data models for storage layer.

Defines the usage ledger entry and the derived quota summary.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class UsageStatus(Enum):
    """Outcome of a single recognition call."""
    SUCCESS = "success"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class UsageLogEntry:
    """Immutable record of one recognition service call.

    Entries are append-only. Once written to the ledger they are never
    modified, only dropped by retention or an explicit clear.
    """
    timestamp: datetime
    session_id: str
    model: str
    files_processed: int
    prompt_tokens: int
    output_tokens: int
    estimated_cost: float
    status: UsageStatus
    processing_time_ms: int
    error_message: Optional[str] = None

    def __post_init__(self):
        """Validate field constraints."""
        if self.timestamp.tzinfo is None:
            raise ValueError("timestamp must be timezone-aware")
        if not isinstance(self.status, UsageStatus):
            raise ValueError(f"status must be a UsageStatus, got {self.status!r}")
        if self.files_processed <= 0:
            raise ValueError("files_processed must be > 0")
        if self.prompt_tokens < 0:
            raise ValueError("prompt_tokens cannot be negative")
        if self.output_tokens < 0:
            raise ValueError("output_tokens cannot be negative")
        if self.estimated_cost < 0:
            raise ValueError("estimated_cost cannot be negative")
        if self.processing_time_ms < 0:
            raise ValueError("processing_time_ms cannot be negative")
        if self.status == UsageStatus.SUCCESS and self.error_message is not None:
            raise ValueError("error_message is only allowed on failed entries")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + output)."""
        return self.prompt_tokens + self.output_tokens

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted camelCase layout."""
        data = {
            "timestamp": self.timestamp.isoformat(),
            "sessionId": self.session_id,
            "model": self.model,
            "filesProcessed": self.files_processed,
            "promptTokens": self.prompt_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
            "estimatedCost": self.estimated_cost,
            "status": self.status.value,
            "processingTimeMs": self.processing_time_ms,
        }
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageLogEntry":
        """Rebuild an entry from its persisted form.

        ``totalTokens`` is ignored on read since it is always derived.

        Raises:
            ValueError: If the data is missing fields or has invalid values
        """
        if not isinstance(data, dict):
            raise ValueError(f"entry must be an object, got {type(data).__name__}")

        try:
            return cls(
                timestamp=datetime.fromisoformat(data["timestamp"]),
                session_id=str(data["sessionId"]),
                model=str(data["model"]),
                files_processed=int(data["filesProcessed"]),
                prompt_tokens=int(data["promptTokens"]),
                output_tokens=int(data["outputTokens"]),
                estimated_cost=float(data["estimatedCost"]),
                status=UsageStatus(data["status"]),
                processing_time_ms=int(data["processingTimeMs"]),
                error_message=data.get("errorMessage"),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"malformed usage entry: {e!r}") from e


@dataclass(frozen=True)
class QuotaSummary:
    """Aggregate view over a sequence of usage entries. Never persisted."""
    total_requests: int
    successful_requests: int
    failed_requests: int
    rate_limited_requests: int
    total_prompt_tokens: int
    total_output_tokens: int
    total_tokens: int
    total_cost: float
    average_processing_time: float
    first_request: str
    last_request: str

    @property
    def success_rate(self) -> float:
        """Percentage of successful requests (0 when there are none)."""
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests * 100

    @property
    def average_cost(self) -> float:
        """Average estimated cost per request."""
        if self.total_requests == 0:
            return 0.0
        return self.total_cost / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "successfulRequests": self.successful_requests,
            "failedRequests": self.failed_requests,
            "rateLimitedRequests": self.rate_limited_requests,
            "totalPromptTokens": self.total_prompt_tokens,
            "totalOutputTokens": self.total_output_tokens,
            "totalTokens": self.total_tokens,
            "totalCost": self.total_cost,
            "averageProcessingTime": self.average_processing_time,
            "firstRequest": self.first_request,
            "lastRequest": self.last_request,
        }
