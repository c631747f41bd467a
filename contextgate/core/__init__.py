"""
Core module initialization
"""

from .engine import ContextGate
from .config import Config

__all__ = ["ContextGate", "Config"]
