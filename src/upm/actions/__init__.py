"""Action handlers dispatched by ``upm run``."""

from upm.actions.builtin import register_builtin_actions
from upm.actions.registry import ActionContext, ActionRegistry, ActionSpec, Handler


def default_registry() -> ActionRegistry:
    """A fresh registry holding the built-in actions."""
    return register_builtin_actions(ActionRegistry())


__all__ = [
    "ActionContext",
    "ActionRegistry",
    "ActionSpec",
    "Handler",
    "default_registry",
    "register_builtin_actions",
]
