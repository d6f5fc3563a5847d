"""
Calling platform package.

Keep package import side-effects to a minimum to avoid circular imports.
Do not import factory/adapters here.
"""

__all__ = [
    "interface",
    "config",
    "extraction",
    "factory",
    "happyrobot_adapter",
    "mock_adapter",
]
