"""Value types and error taxonomy shared by the GCOM components."""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

OrderId = str


class GcomError(RuntimeError):
    """Base class for portal failures that end a run."""


class AuthFailure(GcomError):
    """Login did not land on the order control page."""


class ProtocolFailure(GcomError):
    """A token required by the listing protocol was not found in a response."""


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class AuthenticationBundle:
    """Cookies plus the two portal tokens captured from an interactive login."""

    cookies: Mapping[str, str]
    execution: str
    view_state: str

    # Value equality only; the cookie mapping proxy cannot be hashed.
    __hash__ = None  # type: ignore[assignment]

    def __post_init__(self) -> None:
        object.__setattr__(self, "cookies", MappingProxyType(dict(self.cookies)))

    def cookie_header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())


@dataclass(frozen=True)
class ClosureOutcome:
    """Result of one closure attempt.

    ``messages`` holds a confirmation on success and at least one diagnostic on
    failure. ``unexpected`` marks failures synthesized from a fault caught at
    the workflow boundary; the controller halts the run on those.
    """

    order_id: OrderId
    succeeded: bool
    messages: tuple[str, ...] = field(default_factory=tuple)
    unexpected: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages))
        if not self.succeeded and not self.messages:
            raise ValueError("failed closure outcome requires at least one message")

    @classmethod
    def success(cls, order_id: OrderId, message: str = "OK") -> ClosureOutcome:
        return cls(order_id=order_id, succeeded=True, messages=(message,))

    @classmethod
    def failure(cls, order_id: OrderId, messages: Iterable[str] | str, *, unexpected: bool = False) -> ClosureOutcome:
        if isinstance(messages, str):
            messages = (messages,)
        return cls(order_id=order_id, succeeded=False, messages=tuple(messages), unexpected=unexpected)

    def describe(self) -> str:
        if self.succeeded:
            return "OK"
        return "ERROR: " + "; ".join(self.messages)


__all__ = [
    "AuthFailure",
    "AuthenticationBundle",
    "ClosureOutcome",
    "Credentials",
    "GcomError",
    "OrderId",
    "ProtocolFailure",
]
