"""
Read-only status API.
"""
