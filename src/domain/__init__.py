"""Domain values for the quote engine.

Pair identifiers and the margin policy are pure, I/O-free building blocks
shared by the provider clients and the price service.
"""

__all__ = [
    "pair",
    "pricing",
]
