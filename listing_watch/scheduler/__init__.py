"""
Periodic background jobs.
"""
