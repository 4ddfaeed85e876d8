"""
Maestro - Core Package
======================

Configuration, persistence, schemas and the execution orchestrator.
"""

from maestro.core.config import settings
from maestro.core.database import Base

__all__ = ["Base", "settings"]
