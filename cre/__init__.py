"""
Clinical Resilience Engine (CRE) core

Deterministic, rule-based intake processing: multilingual phrase
normalization, follow-up answer classification, workup sufficiency checks
and content-addressed hashing for audit-safe idempotency.
"""

__version__ = "1.0.0"
