"""
Vulnerability feature module: records, their lifecycle engine and routes.
"""
