"""
Recognition client backed by the OpenAI chat completions API.

Sends document images to a multimodal model and records every call,
successful or not, in the usage ledger.
"""

import base64
import logging
import mimetypes
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from openai import OpenAI

from ..core.ledger import PersistenceResult, QuotaLedger
from ..core.pricing import PRICING_TABLE, ModelPricing, calculate_cost, split_cost
from ..core.token_counter import TokenUsage
from .records import OCRRecord, parse_records

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """Role: You are a forensic document examiner specializing in handwritten Marathi Devanagari script.
Objective: Extract handwritten text with full stroke fidelity.

- Trace the ink path of every character before naming it.
- Never substitute a common name when the strokes do not support it; list both readings instead.
- Output Marathi Devanagari only, never English or transliteration.
- Return strictly valid JSON."""

TASK_PROMPT = """Task: transcribe these handwritten Marathi property records.

For every image return one record with:
- flat_number: the Sr. No in the left margin
- original_owner: the first line of the main content
- transfers: every following line

For each line give `text` (the most visually certain reading), `alternatives`
(about ten stroke-level and phonetic variants, Marathi only) and `box_2d`
([ymin, xmin, ymax, xmax] on a 0-1000 scale).

A word written above a scratched-out word replaces it; a word squeezed above a
clear line belongs to that line. Do not create extra lines for either."""

_LINE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "text": {"type": "string"},
        "alternatives": {"type": "array", "items": {"type": "string"}},
        "box_2d": {"type": "array", "items": {"type": "integer"}},
    },
    "required": ["text", "alternatives"],
}

RESPONSE_FORMAT: Dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": "ocr_records",
        "schema": {
            "type": "object",
            "properties": {
                "records": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "file_name": {"type": "string"},
                            "document_type": {"type": "string"},
                            "flat_number": _LINE_SCHEMA,
                            "original_owner": _LINE_SCHEMA,
                            "transfers": {"type": "array", "items": _LINE_SCHEMA},
                        },
                        "required": [
                            "file_name", "document_type", "flat_number",
                            "original_owner", "transfers",
                        ],
                    },
                },
            },
            "required": ["records"],
        },
    },
}


def _image_part(path: Path) -> Dict[str, Any]:
    mime, _ = mimetypes.guess_type(path.name)
    b64 = base64.standard_b64encode(path.read_bytes()).decode("ascii")
    return {
        "type": "image_url",
        "image_url": {"url": f"data:{mime or 'image/jpeg'};base64,{b64}"},
    }


def build_messages(paths: Sequence[Path]) -> List[Dict[str, Any]]:
    """Build the chat messages for a batch of images.

    Raises:
        OSError: If an image cannot be read
    """
    content: List[Dict[str, Any]] = [{
        "type": "text",
        "text": f"Input Data: Below are {len(paths)} images of handwritten Marathi property records.",
    }]
    for path in paths:
        content.append({"type": "text", "text": f'File Name: "{path.name}"'})
        content.append(_image_part(path))
    content.append({"type": "text", "text": TASK_PROMPT})

    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]


class RecognitionClient:
    """Runs OCR batches and reports each call to the usage ledger.

    Failures of the recognition call are recorded and then re-raised
    unchanged. Ledger persistence failures are only logged.
    """

    def __init__(
        self,
        ledger: QuotaLedger,
        model: str = "gpt-4o",
        pricing: Optional[ModelPricing] = None,
        client: Optional[OpenAI] = None
    ):
        """Initialize the recognition client.

        Args:
            ledger: Ledger receiving one entry per call
            model: Model name (required)
            pricing: Explicit pricing; looked up in the built-in table if None
            client: Preconfigured OpenAI client; a default one is created if None

        Raises:
            ValueError: If model is empty or has no known pricing
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.ledger = ledger
        self.model = model
        self.pricing = pricing or PRICING_TABLE.get_pricing(model)
        self.client = client or OpenAI()

    def recognize(self, files: Sequence[Union[str, Path]]) -> List[OCRRecord]:
        """Transcribe a batch of document images.

        The batch cost is split evenly across the returned records; the
        ledger gets a single entry for the whole call.

        Args:
            files: Image paths (at least one)

        Returns:
            One OCRRecord per document, each carrying its cost share

        Raises:
            ValueError: If no files are given or the response is unusable
            OSError: If an image cannot be read
            OpenAI API errors: Propagated after being recorded
        """
        if not files:
            raise ValueError("files is required and cannot be empty")

        paths = [Path(f) for f in files]
        messages = build_messages(paths)
        start = time.monotonic()

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                response_format=RESPONSE_FORMAT,
                temperature=0.2,
            )
            content = response.choices[0].message.content
            if not content:
                raise ValueError("No response text received from model.")

            records = parse_records(content)
            usage = TokenUsage.from_response_usage(response.usage)
            total_cost = calculate_cost(self.model, usage, self.pricing)
            shares = split_cost(total_cost, len(records))
            records = [replace(r, estimated_cost=s) for r, s in zip(records, shares)]
        except Exception as e:
            result = self.ledger.log_error(
                model=self.model,
                files_processed=len(paths),
                error_message=str(e) or type(e).__name__,
                processing_time_ms=self._elapsed_ms(start),
            )
            self._check_persisted(result)
            logger.error("Recognition call failed: %s", e)
            raise

        result = self.ledger.log_success(
            model=self.model,
            files_processed=len(paths),
            prompt_tokens=usage.prompt_tokens,
            output_tokens=usage.output_tokens,
            estimated_cost=total_cost,
            processing_time_ms=self._elapsed_ms(start),
        )
        self._check_persisted(result)
        return records

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    @staticmethod
    def _check_persisted(result: PersistenceResult) -> None:
        if not result.ok:
            logger.warning(
                "Usage entry not fully persisted (ledger=%s, text mirror=%s)",
                result.ledger_saved, result.mirror_saved
            )
