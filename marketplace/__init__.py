"""
Multi-Vendor Marketplace Backend

Order fulfilment, catalog pricing, reviews, follows and notifications for a
marketplace where independent shops sell side by side.
"""

__version__ = "1.0.0"
