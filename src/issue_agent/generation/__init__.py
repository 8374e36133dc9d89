"""
Generation adapter: provider transport, fallback classification, and output recovery.
"""

from .classify import Fallback, fallback_for
from .provider import Completion, Provider, ProviderClient, ProviderOptions, ResponseSchema, build_provider
from .recovery import RecoveryOutcome, recover
from .structured import generate_structured
from .text import DeltaBuffer, DeltaSink, generate_text

__all__ = [
    "Completion",
    "DeltaBuffer",
    "DeltaSink",
    "Fallback",
    "Provider",
    "ProviderClient",
    "ProviderOptions",
    "RecoveryOutcome",
    "ResponseSchema",
    "build_provider",
    "fallback_for",
    "generate_structured",
    "generate_text",
    "recover",
]
