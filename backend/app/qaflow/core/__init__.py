"""Core package"""
from qaflow.core.config import Settings, settings

__all__ = [
    "Settings",
    "settings",
]
