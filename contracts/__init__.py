"""Contracts shared by the remediation services.

Main exports:
- Services, ServicesFactory: SDK client container and per-region factory
"""

from contracts.services import Services, ServicesFactory

__all__ = ["Services", "ServicesFactory"]
