from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Sequence

if TYPE_CHECKING:
    from vindecode.data_models import SourceResult


RemoteFailureKind = Literal["connection", "request", "malformed_response", "unexpected"]


class VinDecodingError(Exception):
    """Base class for every error raised to callers of the decoding library."""


class MalformedIdentifierError(VinDecodingError, ValueError):
    """The identifier failed structural or checksum validation."""

    def __init__(self, identifier: str, reason: str) -> None:
        super().__init__(f"Invalid vehicle identifier {identifier!r}: {reason}")
        self.identifier = identifier
        self.reason = reason


class DecodeFailedError(VinDecodingError):
    """Every consulted source failed, or none could handle the identifier."""

    def __init__(self, identifier: str, failures: Sequence[SourceResult] = ()) -> None:
        detail = "; ".join(f"{r.source}: {r.error}" for r in failures) or "no applicable sources"
        super().__init__(f"No source could decode {identifier}: {detail}")
        self.identifier = identifier
        self.failures = tuple(failures)


class MalformedResponseError(VinDecodingError):
    """A remote service answered, but not with the payload shape we expect."""


class RemoteDecodeError(VinDecodingError):
    """Legacy-mode remote failure surfaced because local fallback is disabled."""

    def __init__(self, kind: RemoteFailureKind, message: str) -> None:
        super().__init__(f"API {kind.replace('_', ' ')} error: {message}")
        self.kind = kind
