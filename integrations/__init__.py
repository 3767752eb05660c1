"""
Clients for external systems: accounting and carrier tracking.
"""
