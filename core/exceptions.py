"""Exception hierarchy for the node automation core.

Each class maps to one recovery policy:

* :class:`ConfigurationError` -- fatal for the affected identity
  (missing / malformed signing key, bad settings).  Never retried.
* :class:`RegistrationError` -- blocks the identity's current cycle;
  the orchestrator tries again on the next cycle.
* :class:`TransientNetworkError` -- request retries were exhausted.
  Degrades the step to a no-op; logged, never escalated.
* :class:`ProtocolMismatchError` -- the remote service answered at the
  transport level but the payload shape was not what the protocol
  step expects.  Fails that step only.
"""

from typing import Optional


class NodeBotError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(NodeBotError):
    """Unrecoverable configuration problem (e.g. missing signing key)."""


class RegistrationError(NodeBotError):
    """The wallet could not be registered with the remote service."""


class TransientNetworkError(NodeBotError):
    """Request retries were exhausted without a usable response.

    Attributes:
        url: The URL that was being requested.
        reason: Description of the last failure seen.
    """

    def __init__(self, url: str, reason: Optional[str] = None) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Request to {url} failed: {reason or 'unknown error'}")


class ProtocolMismatchError(NodeBotError):
    """Successful transport result with an unexpected payload shape."""
