"""
Invoice Reminder Engine

Turns invoice payment terms into reminder schedules, keeps those schedules
consistent across invoice edits and status changes, and computes overdue
status and late-fee charges at read time.
"""

__version__ = "1.0.0"
