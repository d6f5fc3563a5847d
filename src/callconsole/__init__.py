"""
Sales-operations call console: trigger outbound AI calls and keep their status reconciled.
"""

__version__ = "0.1.0"
