"""
Services Layer for NPHIES Prior Authorization.

Exports the NPHIES messaging service.
"""

from src.services.nphies.nphies_service import (
    NphiesService,
    get_nphies_service,
)

__all__ = [
    "NphiesService",
    "get_nphies_service",
]
