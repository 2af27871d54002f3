"""Typed errors surfaced by the trust core."""


class TrustCoreError(Exception):
    """Base class for every error raised by trustcore."""


class ConfigError(TrustCoreError):
    """Configuration is missing, unknown or unsafe. Raised at startup."""


class CanonicalizationError(TrustCoreError):
    """Input contains a value that has no canonical JSON form."""


class DeadlineExceeded(TrustCoreError):
    """The per-request deadline expired or the request was cancelled."""


class SignerError(TrustCoreError):
    pass


class SignerUnavailable(SignerError):
    """Provider cannot be reached or is misconfigured."""


class SignerRejected(SignerError):
    """Provider ran but refused to sign."""

    def __init__(self, message: str, stderr: str | None = None) -> None:
        super().__init__(message)
        self.stderr = stderr


class SignerTimeout(SignerError, DeadlineExceeded):
    pass


class TsaError(TrustCoreError):
    pass


class TsaUnavailable(TsaError):
    pass


class TsaRejected(TsaError):
    pass


class TsaTimeout(TsaError, DeadlineExceeded):
    pass


class ChainError(TrustCoreError):
    pass


class ChainConflict(ChainError):
    """An append raced with another writer and saw a stale head."""


class ChainCorrupt(ChainError):
    """Verification found a broken link or a hash mismatch."""

    def __init__(self, message: str, first_bad_seq: int | None = None) -> None:
        super().__init__(message)
        self.first_bad_seq = first_bad_seq


class StoreUnavailable(TrustCoreError):
    """The evidence store could not be reached or refused the write."""
