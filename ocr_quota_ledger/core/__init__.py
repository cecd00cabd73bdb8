"""
Core modules for the OCR quota ledger.

This package contains the ledger service, summaries, rate limit
heuristics, pricing and export formatting.
"""
