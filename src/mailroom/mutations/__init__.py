"""Write path: the mutation coordinator and its transition rules."""

from .coordinator import MutationCoordinator
from .transitions import command_for_action, validate_move

__all__ = ["MutationCoordinator", "command_for_action", "validate_move"]
