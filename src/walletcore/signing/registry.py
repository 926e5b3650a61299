"""
Signer registry: which backend instance serves each signer type.

The registry is an explicit object built once at startup and passed to the
account layer. A process-wide instance is also available through
get_registry() for callers that do not wire one themselves.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from types import MappingProxyType

from loguru import logger

from walletcore.errors import ConfigurationError, NoSignerRegisteredError
from walletcore.signing.base import Signer, SignerType
from walletcore.signing.mnemonic import MnemonicSigner, SeedSource


def default_signers(seed_source: SeedSource | None = None) -> dict[SignerType, Signer]:
    """
    Baseline signers installed at process start.

    The mnemonic signer is installed when a seed source is available.
    Hardware signers need a live transport and are never installed by default.
    """
    signers: dict[SignerType, Signer] = {}
    if seed_source is not None:
        signers[SignerType.MNEMONIC] = MnemonicSigner(seed_source)
    return signers


class SignerRegistry:
    """
    Mapping from SignerType to the active signer instance.

    Writes replace the whole mapping under a lock (copy-on-write), so readers
    always see either the old or the new mapping, never a partial update.
    A caller that already obtained a signer keeps that reference until its
    call returns, even if the slot is replaced meanwhile.
    """

    def __init__(self, signers: Mapping[SignerType, Signer] | None = None):
        self._write_lock = threading.Lock()
        self._signers: Mapping[SignerType, Signer] = MappingProxyType({})
        for signer_type, signer in (signers or {}).items():
            self.set_signer(signer_type, signer)

    @classmethod
    def with_defaults(cls, seed_source: SeedSource | None = None) -> SignerRegistry:
        return cls(default_signers(seed_source))

    def set_signer(self, signer_type: SignerType, signer: Signer) -> None:
        if signer is None or not isinstance(signer, Signer):
            raise ConfigurationError(f"Cannot install {signer!r} as {signer_type} signer")
        try:
            signer_type = SignerType(signer_type)
        except ValueError as e:
            raise ConfigurationError(f"Unknown signer type: {signer_type!r}") from e

        with self._write_lock:
            updated = dict(self._signers)
            previous = updated.get(signer_type)
            updated[signer_type] = signer
            self._signers = MappingProxyType(updated)

        if previous is None:
            logger.info(f"Installed {signer!r} for {signer_type.value}")
        else:
            logger.info(f"Replaced {previous!r} with {signer!r} for {signer_type.value}")

    def get_signer(self, signer_type: SignerType) -> Signer:
        signer = self._signers.get(signer_type)
        if signer is None:
            raise NoSignerRegisteredError(signer_type)
        return signer

    def remove_signer(self, signer_type: SignerType) -> Signer | None:
        with self._write_lock:
            updated = dict(self._signers)
            removed = updated.pop(signer_type, None)
            self._signers = MappingProxyType(updated)
        if removed is not None:
            logger.info(f"Removed {removed!r} for {signer_type.value}")
        return removed

    def installed_types(self) -> list[SignerType]:
        return list(self._signers)

    def __contains__(self, signer_type: object) -> bool:
        return signer_type in self._signers

    def count(self) -> int:
        return len(self._signers)


_registry: SignerRegistry | None = None
_registry_lock = threading.Lock()


def get_registry() -> SignerRegistry:
    """Get the process-wide registry, creating an empty one on first use."""
    global _registry

    with _registry_lock:
        if _registry is None:
            _registry = SignerRegistry()
        return _registry


def init_registry(seed_source: SeedSource | None = None) -> SignerRegistry:
    """Install the default signers into a fresh process-wide registry."""
    global _registry

    with _registry_lock:
        _registry = SignerRegistry.with_defaults(seed_source)
        return _registry


def reset_registry() -> None:
    """Drop the process-wide registry (for testing)."""
    global _registry

    with _registry_lock:
        _registry = None


def get_signer(signer_type: SignerType) -> Signer:
    return get_registry().get_signer(signer_type)


def set_signer(signer_type: SignerType, signer: Signer) -> None:
    get_registry().set_signer(signer_type, signer)
