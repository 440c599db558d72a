"""
Shared Kernel Module
====================

Shared infrastructure used by the grouping bounded context and the HTTP
layer: structured logging, metrics export and API middleware.

DO NOT add grouping business logic to the shared kernel.
"""

__version__ = "1.0.0"
