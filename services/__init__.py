"""
VeilCredit Services
===================

Services:
- escrow: commitment discovery index, threshold identity escrow,
  dispute-window scheduling and disclosure
"""
