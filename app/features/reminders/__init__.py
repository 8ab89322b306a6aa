"""
Fix-deadline reminders: the dedup ledger, the daily scan and its scheduler.
"""
