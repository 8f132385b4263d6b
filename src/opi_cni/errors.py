"""Exception hierarchy shared by the resolver, clients and the driver.

Every error carries the CNI error ``code`` reported back to the runtime and,
once the driver has seen it, the ``step`` it originated from.
"""

from __future__ import annotations

from typing import Optional

# CNI well-known error codes
CODE_INCOMPATIBLE_VERSION = 1
CODE_INVALID_ENV = 4
CODE_DECODING_FAILURE = 6
CODE_INVALID_NETCONF = 7
CODE_TRY_AGAIN_LATER = 11
CODE_PLUGIN = 100
CODE_INTERNAL = 999


class OpiCniError(Exception):
    """Base class for every error surfaced to the container runtime."""

    code = CODE_PLUGIN

    def __init__(
        self,
        msg: str,
        *,
        step: Optional[str] = None,
        details: str = "",
        code: Optional[int] = None,
    ) -> None:
        super().__init__(msg)
        if code is not None:
            self.code = code
        self.msg = msg
        self.step = step
        self.details = details

    def __str__(self) -> str:
        if self.step:
            return f"{self.step}: {self.msg}"
        return self.msg


class ConfigError(OpiCniError):
    code = CODE_INVALID_NETCONF


class InvalidConfig(ConfigError):
    """Mutually exclusive or otherwise inconsistent configuration fields."""


class ResolutionError(OpiCniError):
    """The physical function could not be identified on this host."""


class AlreadyAllocated(OpiCniError):
    code = CODE_TRY_AGAIN_LATER


class UnsupportedDevice(OpiCniError):
    pass


class RemoteUnavailable(OpiCniError):
    code = CODE_TRY_AGAIN_LATER


class RemoteError(OpiCniError):
    pass


class NotReady(OpiCniError):
    pass


class MappingError(OpiCniError):
    pass


class NamespaceError(OpiCniError):
    pass


class NamespaceNotFound(NamespaceError):
    pass


class IpamError(OpiCniError):
    pass


class VFError(OpiCniError):
    pass


class StateError(OpiCniError):
    """Reading or writing persisted allocation/cache state failed."""
