"""
Exception hierarchy for the wallet core.

Every error is recoverable by the caller: retry, reconfigure or prompt the
user again. User rejection is deliberately not a DeviceError so callers can
message it differently from a transport failure.
"""

from __future__ import annotations


class WalletError(Exception):
    """Base class for all wallet core errors."""

    pass


class ConfigurationError(WalletError):
    """Invalid configuration or metadata. Never retried automatically."""

    pass


class NoSignerRegisteredError(ConfigurationError):
    def __init__(self, signer_type: object):
        self.signer_type = signer_type
        super().__init__(f"No signer registered for {signer_type}")


class AccountNotFoundError(ConfigurationError):
    pass


class DerivationError(WalletError):
    """Invalid derivation index or path."""

    pass


class InvalidMnemonicError(DerivationError):
    pass


class InvalidInputError(WalletError):
    """Signing inputs or digest are unusable."""

    pass


class DeviceError(WalletError):
    """Hardware device failure. Carries enough detail to reconnect or retry."""

    retryable = True

    def __init__(self, message: str, status_word: int | None = None):
        self.status_word = status_word
        super().__init__(message)


class DeviceDisconnectedError(DeviceError):
    pass


class WrongAppError(DeviceError):
    """The wallet application is not open on the device."""

    def __init__(self, message: str, app_name: str | None = None, status_word: int | None = None):
        self.app_name = app_name
        super().__init__(message, status_word=status_word)


class DeviceBusyError(DeviceError):
    pass


class DeviceTimeoutError(DeviceError):
    pass


class DeviceLockedError(DeviceError):
    pass


class UserRejectedError(WalletError):
    """The user declined on the device. Not retryable without fresh user action."""

    retryable = False


class AddressError(WalletError):
    pass


class InvalidPayloadError(AddressError):
    pass


class InvalidAddressFormatError(AddressError):
    pass


class InvalidOutputKindError(WalletError):
    pass


class ReconciliationError(WalletError):
    """A ledger delta that would corrupt the account fold."""

    pass
