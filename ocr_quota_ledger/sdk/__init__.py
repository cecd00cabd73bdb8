"""
SDK for the OCR quota ledger.

Provides the recognition client that reports its usage to the ledger.
"""

from .recognition_client import RecognitionClient
from .records import OCRLine, OCRRecord

__all__ = ["RecognitionClient", "OCRLine", "OCRRecord"]
