"""Automated closure of pending GCOM service orders."""

from typing import Any

__all__ = ["ExecutionController", "build_controller"]


def __getattr__(name: str) -> Any:
    if name in __all__:
        from baixa_os import controller as _controller

        return getattr(_controller, name)
    raise AttributeError(name)
