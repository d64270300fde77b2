"""
LuxGate - canonicalization and gating of Luxembourg GAAP statutory accounts.

Turns OCR/layout output of scanned annual accounts into a code-indexed
financial model and decides how much downstream analysis it can support.
"""

__version__ = "1.0.0"
