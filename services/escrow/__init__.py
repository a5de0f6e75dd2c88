"""
Escrow Service
==============

Commitment index, identity escrow, dispute scheduling and disclosure.
"""
