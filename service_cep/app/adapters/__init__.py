"""
Adapters package for the CEP Lookup Service.

Contains the HTTP client wrapper for the ViaCEP directory. The adapter
encapsulates the URL shape and maps HTTP outcomes onto shared errors;
it does not retry.
"""

from .viacep_client import ViaCepClient

__all__ = ["ViaCepClient"]
