"""
LiraX Bridge - resilient client and webhook receiver for the LiraX
telephony/CRM API.
"""

__version__ = "0.1.0"
