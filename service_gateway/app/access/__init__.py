"""
Access control applied at the gateway listener.
"""

from .allowlist import AccessDecision, AllowListFilter

__all__ = ["AccessDecision", "AllowListFilter"]
