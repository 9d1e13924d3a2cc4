"""Trusted timestamp authority client."""

from .client import (
    HttpTimestampAuthority,
    LocalTimestampAuthority,
    TimestampAuthority,
    TimestampAuthorityClient,
    TimestampQueue,
    TsaHttpConfig,
    TsaToken,
    TsaWitnessProvider,
)

__all__ = [
    "HttpTimestampAuthority",
    "LocalTimestampAuthority",
    "TimestampAuthority",
    "TimestampAuthorityClient",
    "TimestampQueue",
    "TsaHttpConfig",
    "TsaToken",
    "TsaWitnessProvider",
]
