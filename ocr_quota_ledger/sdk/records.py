"""
Structured records returned by the recognition service.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class OCRLine:
    """One transcribed line with its alternative readings."""
    text: str
    alternatives: List[str] = field(default_factory=list)
    box_2d: Optional[List[int]] = None  # [ymin, xmin, ymax, xmax], 0-1000 scale

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OCRLine":
        if not isinstance(data, dict) or "text" not in data:
            raise ValueError(f"line must be an object with 'text': {data!r}")
        box = data.get("box_2d")
        return cls(
            text=str(data["text"]),
            alternatives=[str(a) for a in data.get("alternatives") or []],
            box_2d=[int(v) for v in box] if box else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"text": self.text, "alternatives": list(self.alternatives)}
        if self.box_2d is not None:
            data["box_2d"] = list(self.box_2d)
        return data


@dataclass(frozen=True)
class OCRRecord:
    """Extracted data for one document image."""
    file_name: str
    document_type: str
    flat_number: OCRLine
    original_owner: OCRLine
    transfers: List[OCRLine] = field(default_factory=list)
    estimated_cost: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OCRRecord":
        if not isinstance(data, dict):
            raise ValueError(f"record must be an object: {data!r}")
        try:
            return cls(
                file_name=str(data["file_name"]),
                document_type=str(data["document_type"]),
                flat_number=OCRLine.from_dict(data["flat_number"]),
                original_owner=OCRLine.from_dict(data["original_owner"]),
                transfers=[OCRLine.from_dict(t) for t in data.get("transfers") or []],
            )
        except KeyError as e:
            raise ValueError(f"record missing field {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_name": self.file_name,
            "document_type": self.document_type,
            "flat_number": self.flat_number.to_dict(),
            "original_owner": self.original_owner.to_dict(),
            "transfers": [t.to_dict() for t in self.transfers],
            "estimated_cost": self.estimated_cost,
        }


def parse_records(content: str) -> List[OCRRecord]:
    """Parse the model's JSON output into records.

    Accepts either ``{"records": [...]}`` or a bare array.

    Raises:
        ValueError: If the content is not valid JSON or has the wrong shape
    """
    data = json.loads(content)
    if isinstance(data, dict):
        data = data.get("records")
    if not isinstance(data, list):
        raise ValueError("expected a JSON array of records")
    return [OCRRecord.from_dict(item) for item in data]
