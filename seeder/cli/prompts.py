"""
Operator confirmation between stages.
"""

from typing import Callable


class ConsolePrompt:
    """Asks on the terminal; anything but yes declines."""

    def __init__(self, input_func: Callable[[str], str] = input):
        self.input_func = input_func

    def confirm(self, message: str) -> bool:
        try:
            answer = self.input_func(f"{message} [y/N] ")
        except EOFError:
            return False
        return answer.strip().lower() in ("y", "yes")


class AutoConfirm:
    """Always continues (--yes)."""

    def confirm(self, message: str) -> bool:
        return True
