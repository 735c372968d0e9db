"""
Process-level services for the listing monitor.
"""
