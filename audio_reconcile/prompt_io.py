from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol


class PromptIO(Protocol):
    def print(self, text: str = "") -> None: ...

    def input(self, prompt: str = "") -> Optional[str]:
        """Next line of operator input, or ``None`` once input is closed."""
        ...


class ConsolePromptIO:
    def print(self, text: str = "") -> None:
        print(text)

    def input(self, prompt: str = "") -> Optional[str]:
        try:
            return input(prompt)
        except EOFError:
            print()
            return None


@dataclass(slots=True)
class BufferPromptIO:
    """Scripted operator for tests; ``strict`` turns running out of input into a failure."""

    inputs: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    prompts: List[str] = field(default_factory=list)
    strict: bool = False

    def print(self, text: str = "") -> None:
        self.outputs.append(text)

    def input(self, prompt: str = "") -> Optional[str]:
        self.prompts.append(prompt)
        if not self.inputs:
            if self.strict:
                raise AssertionError("BufferPromptIO has no more inputs")
            return None
        return self.inputs.pop(0)

