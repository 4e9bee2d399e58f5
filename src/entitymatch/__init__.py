"""
entitymatch - Entity Resolution & Confidence-Scored Deduplication Engine

An engine that:
- Resolves noisy person and vendor mentions to canonical identities
- Scores every resolution with a multi-signal confidence model
- Routes low-confidence and ambiguous results to human review
- Merges duplicate identities without ever deleting records
"""

__version__ = "0.1.0"
