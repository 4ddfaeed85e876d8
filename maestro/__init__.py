"""
Maestro
=======

Applies a prompt to many repositories through a coding agent, one
isolated branch per repository.
"""

__version__ = "0.1.0"
