"""
Shared infrastructure: database, logging, exceptions.
"""
