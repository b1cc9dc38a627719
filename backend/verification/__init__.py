"""
Movie metadata verification.
Fetches each record from several catalogs in parallel under per-source rate
limits, resolves every field by trust-weighted consensus, and reports verified
facts, a review queue and quality scores.
"""
