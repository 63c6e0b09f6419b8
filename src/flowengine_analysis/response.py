"""Record wrapper passed between pipeline stages."""

from __future__ import annotations

from typing import Any, Dict, List


class Response:
    """One record's value plus the chain of stages that produced it.

    `input` is either the previous `Response` or the raw source record, so the
    full lineage of an output can be rebuilt with `history()`.
    """

    __slots__ = ("output", "input", "generator", "level")

    def __init__(self, output: Any, input: Any = None, generator: str = "", level: int = 0):
        self.output = output
        self.input = input
        self.generator = generator
        self.level = level

    @classmethod
    def create(cls, output: Any, input: Any, generator: str) -> "Response":
        level = input.level + 1 if isinstance(input, Response) else 0
        return cls(output=output, input=input, generator=str(generator or ""), level=level)

    def history(self) -> List["Response"]:
        """Oldest-first list of responses leading to this one."""
        out: list[Response] = []
        current: Any = self
        while isinstance(current, Response):
            out.append(current)
            current = current.input
        out.reverse()
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output": self.output,
            "input": self.input.to_dict() if isinstance(self.input, Response) else self.input,
            "generator": self.generator,
            "level": self.level,
        }

    def __repr__(self) -> str:
        return f"Response(generator={self.generator!r}, level={self.level}, output={self.output!r})"


def output_of(value: Any) -> Any:
    """Unwrap a `Response` to its output; other values pass through."""
    return value.output if isinstance(value, Response) else value
