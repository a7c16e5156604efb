"""
Fulfillment Service
Payment reconciliation, fulfillment and scheduling back office.
"""

__version__ = "1.0.0"
