"""
Authentication wiring: bearer JWT validation and the caller identity.
"""
