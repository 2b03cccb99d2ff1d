from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from .Brackets import Segment, split_template
from .Resolver import Bindings


@dataclass
class PromptInstance:
    """One fully substituted prompt plus the values that produced it."""
    text: str
    fill_history: Dict[str, str] = field(default_factory=OrderedDict)

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "fill_history": dict(self.fill_history)}


def _value_text(value: Any) -> Tuple[str, Dict[str, str]]:
    # Upstream results arrive either as plain strings or as response dicts
    # carrying their own fill history.
    if isinstance(value, dict):
        return str(value.get("text", "")), dict(value.get("fill_history") or {})
    if isinstance(value, str):
        return value, {}
    return str(value), {}


class CrossProductExpander:
    """
    Expands bindings into the ordered list of bound instances.

    Order contract: placeholders are filled in order of first appearance in
    the template; for each one, its candidate values are taken in list order.
    A value that introduces new placeholders has them filled in turn when
    the bindings know them. Only the value's own text is scanned for those;
    braces or backslashes in a value never reach into the template around it.
    """

    def expand(self, bindings: Bindings, template: str) -> List[PromptInstance]:
        results: List[PromptInstance] = []
        segments = self._segments(template or "", bindings, set())
        self._fill(segments, bindings, set(), OrderedDict(), results)
        return results

    @staticmethod
    def _segments(text: str, bindings: Bindings, filled: Set[str]) -> List[Segment]:
        # placeholders the bindings cannot fill are kept as literal text
        segments: List[Segment] = []
        for chunk, name in split_template(text):
            if name is not None and (name not in bindings or name in filled):
                name = None
            segments.append((chunk, name))
        return segments

    def _fill(self,
              segments: List[Segment],
              bindings: Bindings,
              filled: Set[str],
              history: Dict[str, str],
              results: List[PromptInstance]) -> None:
        name: Optional[str] = next((n for _, n in segments if n is not None), None)
        if name is None:
            results.append(PromptInstance("".join(chunk for chunk, _ in segments), history))
            return

        now_filled = filled | {name}
        for value in bindings[name]:
            text, carried = _value_text(value)
            next_history = OrderedDict(history)
            next_history[name] = text
            for key, val in carried.items():
                next_history.setdefault(key, val)

            inner = self._segments(text, bindings, now_filled)
            spliced: List[Segment] = []
            for segment in segments:
                if segment[1] == name:
                    spliced.extend(inner)
                else:
                    spliced.append(segment)
            self._fill(spliced, bindings, now_filled, next_history, results)


def expand(bindings: Bindings, template: str) -> List[PromptInstance]:
    return CrossProductExpander().expand(bindings, template)
