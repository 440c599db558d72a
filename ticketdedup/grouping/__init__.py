"""
Grouping Module
================

Bounded Context for turning chat messages into deduplicated tickets.

Responsibilities:
- Normalize messages and drop pleasantries
- Classify relevance and category with an LLM
- Match each message to an existing ticket (thread, canonical key,
  semantic search, recent channel activity) or open a new one
- Keep ticket summaries current and notify live listeners
"""

__version__ = "1.0.0"
