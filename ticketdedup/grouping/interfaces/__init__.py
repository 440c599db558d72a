"""
Grouping Interfaces Layer
==========================

Interface adapters (controllers) for the message grouping module.

Contains:
- Controllers: FastAPI route handlers
"""

from ticketdedup.grouping.interfaces.controllers import intake_router, tickets_router

__all__ = ["intake_router", "tickets_router"]
