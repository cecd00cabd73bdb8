"""
Unit tests for SDK layer.

Tests the recognition client wrapper and its usage reporting.
"""

import json
import os
import shutil
import tempfile
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from ocr_quota_ledger.core.ledger import LEDGER_KEY, QuotaLedger
from ocr_quota_ledger.core.pricing import ModelPricing
from ocr_quota_ledger.sdk.recognition_client import (
    RESPONSE_FORMAT,
    RecognitionClient,
    build_messages,
)
from ocr_quota_ledger.sdk.records import OCRRecord, parse_records
from ocr_quota_ledger.storage.models import UsageStatus
from ocr_quota_ledger.storage.repository import MemoryStore, SQLiteStore, StorageFullError


def record_payload(file_name: str) -> dict:
    return {
        "file_name": file_name,
        "document_type": "नोंद",
        "flat_number": {"text": "१२", "alternatives": ["१२"], "box_2d": [10, 20, 30, 40]},
        "original_owner": {"text": "पाटील", "alternatives": ["पाटिल"]},
        "transfers": [{"text": "शिंदे", "alternatives": ["शिन्दे"]}],
    }


def make_response(records, prompt_tokens=1000, completion_tokens=500):
    response = Mock()
    response.choices = [Mock(message=Mock(content=json.dumps({"records": records})))]
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens
    return response


class FullStore(MemoryStore):
    """Store that rejects every ledger write."""

    def write(self, key: str, value: str) -> None:
        if key == LEDGER_KEY:
            raise StorageFullError("quota exceeded")
        super().write(key, value)


class TestRecognitionClient:
    """Test RecognitionClient wrapper."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.files = []
        for name in ("page1.jpg", "page2.png"):
            path = os.path.join(self.temp_dir, name)
            with open(path, "wb") as f:
                f.write(b"\xff\xd8\xff fake image bytes")
            self.files.append(path)
        self.ledger = QuotaLedger(store=MemoryStore(), session_store=MemoryStore())

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @patch('ocr_quota_ledger.sdk.recognition_client.OpenAI')
    def test_init_success(self, mock_openai_class):
        """Test successful initialization."""
        mock_openai_class.return_value = Mock()

        client = RecognitionClient(self.ledger, model="gpt-4o")

        assert client.model == "gpt-4o"
        assert client.ledger is self.ledger
        assert client.pricing.input_cost_per_1m == Decimal("2.50")
        assert client.client is not None

    def test_init_missing_model(self):
        """Test initialization fails with missing model."""
        with pytest.raises(ValueError, match="model is required"):
            RecognitionClient(self.ledger, model="", client=Mock())

        with pytest.raises(ValueError, match="model is required"):
            RecognitionClient(self.ledger, model=None, client=Mock())

    def test_init_unknown_model_without_pricing(self):
        """Test unknown models need explicit pricing."""
        with pytest.raises(ValueError, match="Unsupported model"):
            RecognitionClient(self.ledger, model="mystery-model", client=Mock())

        pricing = ModelPricing(Decimal("1"), Decimal("2"))
        client = RecognitionClient(self.ledger, model="mystery-model", pricing=pricing, client=Mock())
        assert client.pricing is pricing

    def test_success_records_usage_and_splits_cost(self):
        """Test a successful call logs once and splits cost per record."""
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = make_response(
            [record_payload("page1.jpg"), record_payload("page2.png")]
        )
        client = RecognitionClient(self.ledger, model="gpt-4o", client=mock_client)

        records = client.recognize(self.files)

        # gpt-4o: 1000/1M * $2.50 + 500/1M * $10.00 = $0.0075
        assert [r.file_name for r in records] == ["page1.jpg", "page2.png"]
        for record in records:
            assert record.estimated_cost == pytest.approx(0.00375)
        assert sum(r.estimated_cost for r in records) == pytest.approx(0.0075)

        logs = self.ledger.get_all_logs()
        assert len(logs) == 1
        entry = logs[0]
        assert entry.status == UsageStatus.SUCCESS
        assert entry.model == "gpt-4o"
        assert entry.files_processed == 2
        assert entry.prompt_tokens == 1000
        assert entry.output_tokens == 500
        assert entry.estimated_cost == pytest.approx(0.0075)
        assert entry.processing_time_ms >= 0

    def test_request_shape(self):
        """Test the API is called with images and the response schema."""
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = make_response([record_payload("page1.jpg")])
        client = RecognitionClient(self.ledger, model="gpt-4o", client=mock_client)

        client.recognize(self.files[:1])

        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["response_format"] == RESPONSE_FORMAT
        assert kwargs["temperature"] == 0.2
        user_content = kwargs["messages"][1]["content"]
        image_parts = [p for p in user_content if p["type"] == "image_url"]
        assert len(image_parts) == 1
        assert image_parts[0]["image_url"]["url"].startswith("data:image/jpeg;base64,")

    def test_rate_limited_failure_is_logged_and_reraised(self):
        """Test upstream failures are recorded then propagated unchanged."""
        error = RuntimeError("503 Service Unavailable: model overloaded")
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = error
        client = RecognitionClient(self.ledger, model="gpt-4o", client=mock_client)

        with pytest.raises(RuntimeError) as exc_info:
            client.recognize(self.files)
        assert exc_info.value is error

        entry = self.ledger.get_all_logs()[0]
        assert entry.status == UsageStatus.RATE_LIMITED
        assert entry.files_processed == 2
        assert entry.error_message == "503 Service Unavailable: model overloaded"
        assert entry.total_tokens == 0
        assert entry.estimated_cost == 0.0

    def test_unparseable_response_is_logged_as_error(self):
        """Test a bad response body becomes an error entry."""
        response = make_response([])
        response.choices[0].message.content = "not json at all"
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = response
        client = RecognitionClient(self.ledger, model="gpt-4o", client=mock_client)

        with pytest.raises(ValueError):
            client.recognize(self.files)
        assert self.ledger.get_all_logs()[0].status == UsageStatus.ERROR

    def test_empty_response_is_logged_as_error(self):
        """Test an empty model reply is an error."""
        response = make_response([])
        response.choices[0].message.content = ""
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = response
        client = RecognitionClient(self.ledger, model="gpt-4o", client=mock_client)

        with pytest.raises(ValueError, match="No response text"):
            client.recognize(self.files)
        assert self.ledger.get_all_logs()[0].error_message == "No response text received from model."

    def test_empty_file_list(self):
        """Test that an empty batch is rejected before any call."""
        mock_client = Mock()
        client = RecognitionClient(self.ledger, model="gpt-4o", client=mock_client)

        with pytest.raises(ValueError, match="files is required"):
            client.recognize([])
        mock_client.chat.completions.create.assert_not_called()
        assert self.ledger.get_all_logs() == []

    def test_missing_image_is_not_logged(self):
        """Test unreadable inputs fail before the service is called."""
        mock_client = Mock()
        client = RecognitionClient(self.ledger, model="gpt-4o", client=mock_client)

        with pytest.raises(OSError):
            client.recognize([os.path.join(self.temp_dir, "missing.jpg")])
        mock_client.chat.completions.create.assert_not_called()
        assert self.ledger.get_all_logs() == []

    def test_ledger_failure_does_not_break_recognition(self):
        """Test records are returned even if usage cannot be saved."""
        ledger = QuotaLedger(store=FullStore(), session_store=MemoryStore())
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = make_response([record_payload("page1.jpg")])
        client = RecognitionClient(ledger, model="gpt-4o", client=mock_client)

        records = client.recognize(self.files[:1])

        assert len(records) == 1
        assert ledger.get_all_logs() == []

    def test_unopenable_database_keeps_original_error(self):
        """Test the upstream error still propagates when usage cannot be saved."""
        ledger = QuotaLedger(store=SQLiteStore(self.temp_dir), session_store=MemoryStore())
        error = RuntimeError("503 Service Unavailable")
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = error
        client = RecognitionClient(ledger, model="gpt-4o", client=mock_client)

        with pytest.raises(RuntimeError) as exc_info:
            client.recognize(self.files)
        assert exc_info.value is error


class TestRecords:
    """Test record parsing."""

    def test_parse_wrapped_records(self):
        """Test the {"records": [...]} envelope."""
        records = parse_records(json.dumps({"records": [record_payload("a.jpg")]}))
        assert len(records) == 1
        record = records[0]
        assert record.flat_number.box_2d == [10, 20, 30, 40]
        assert record.original_owner.box_2d is None
        assert record.transfers[0].alternatives == ["शिन्दे"]

    def test_parse_bare_array(self):
        """Test a bare JSON array is accepted."""
        assert len(parse_records(json.dumps([record_payload("a.jpg")]))) == 1

    def test_parse_wrong_shape(self):
        """Test non-array payloads are rejected."""
        with pytest.raises(ValueError, match="JSON array"):
            parse_records(json.dumps({"items": []}))

    def test_missing_field(self):
        """Test incomplete records are rejected."""
        payload = record_payload("a.jpg")
        del payload["original_owner"]
        with pytest.raises(ValueError, match="original_owner"):
            OCRRecord.from_dict(payload)

    def test_to_dict_round_trip(self):
        """Test serialization keeps the cost share."""
        record = OCRRecord.from_dict(record_payload("a.jpg"))
        data = record.to_dict()
        assert data["estimated_cost"] == 0.0
        assert data["flat_number"]["box_2d"] == [10, 20, 30, 40]
        assert "box_2d" not in data["original_owner"]


def test_build_messages_labels_each_file(tmp_path):
    """Test every image is preceded by its file name."""
    paths = []
    for name in ("a.png", "b.png"):
        path = tmp_path / name
        path.write_bytes(b"\x89PNG")
        paths.append(path)

    messages = build_messages(paths)

    assert messages[0]["role"] == "system"
    texts = [p["text"] for p in messages[1]["content"] if p["type"] == "text"]
    assert "Below are 2 images" in texts[0]
    assert 'File Name: "a.png"' in texts
    assert 'File Name: "b.png"' in texts
