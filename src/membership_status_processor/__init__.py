"""
Membership Status Processor

Scheduled job that recalculates CRM membership statuses from their dates
and the configured status catalog.
"""

__version__ = "1.0.0"
