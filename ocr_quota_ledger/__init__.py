"""
OCR Quota Ledger.

Usage accounting for a handwritten-document recognition service.
"""

__version__ = "0.1.0"
