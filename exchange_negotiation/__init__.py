"""
Exchange Negotiation

Negotiation lifecycle for bilateral exchange configurations and
ecosystem memberships in a data-exchange platform.
"""

__version__ = "0.1.0"
