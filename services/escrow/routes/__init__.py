"""
Escrow Service Routes
=====================

API route handlers for the escrow service.
"""

from services.escrow.routes import commitments, discovery, disputes, escrow, reveal


__all__ = ["commitments", "discovery", "disputes", "escrow", "reveal"]
