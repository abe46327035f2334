from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, ClassVar, Dict, Iterator, Mapping, Optional

logger = logging.getLogger(__name__)

Reducer = Callable[[Any, Any], Any]


def keep_latest(previous: Any, incoming: Any) -> Any:
    """Default reducer: the incoming value wins unless it is None."""
    return previous if incoming is None else incoming


def replace(previous: Any, incoming: Any) -> Any:
    """The incoming value always wins, including None."""
    _ = previous
    return incoming


def append_items(previous: Any, incoming: Any) -> list:
    """Concatenate lists. A non-list incoming value is appended as a single item."""
    merged = list(previous or [])
    if incoming is None:
        return merged
    if isinstance(incoming, (list, tuple)):
        merged.extend(incoming)
    else:
        merged.append(incoming)
    return merged


def merge_slots(previous: Any, incoming: Any) -> Dict[str, Any]:
    """
    Merge `{"intro": slot, "stops": [slot, ...]}` structures slot by slot.

    A None intro or a None entry in `stops` keeps the previous slot, so partial
    updates from independent work items never erase each other.
    """
    prev = previous or {}
    inc = incoming or {}
    intro = inc.get("intro") if inc.get("intro") is not None else prev.get("intro")

    prev_stops = list(prev.get("stops") or [])
    inc_stops = list(inc.get("stops") or [])
    size = max(len(prev_stops), len(inc_stops))
    stops = []
    for i in range(size):
        new = inc_stops[i] if i < len(inc_stops) else None
        old = prev_stops[i] if i < len(prev_stops) else None
        stops.append(new if new is not None else old)
    return {"intro": intro, "stops": stops}


@dataclass(frozen=True, slots=True)
class StateField:
    default: Any = None
    default_factory: Optional[Callable[[], Any]] = None
    reducer: Reducer = keep_latest

    def make_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        return copy.deepcopy(self.default)


class GraphState(Mapping[str, Any]):
    """
    An immutable snapshot of workflow state.

    Every declared field is always present. Reading an undeclared field raises
    KeyError (or AttributeError for attribute access).
    """

    __slots__ = ("_schema", "_values")

    def __init__(self, schema: type["StateSchema"], values: Dict[str, Any]) -> None:
        self._schema = schema
        self._values = values

    @property
    def schema(self) -> type["StateSchema"]:
        return self._schema

    def __getitem__(self, key: str) -> Any:
        if key not in self._schema.fields:
            raise KeyError(f"Undeclared state field: {key} (schema={self._schema.__name__})")
        return self._values[key]

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError as exc:
            raise AttributeError(str(exc)) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"{self._schema.__name__}({self._values!r})"

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._values)


class StateSchema:
    """
    Declarative state schema.

    Subclasses declare one `StateField` per state field as class attributes.
    Fields are inherited, so every workflow gets the `errors` list used by the
    graph engine to record failed steps.
    """

    fields: ClassVar[Mapping[str, StateField]] = MappingProxyType({})

    errors = StateField(default_factory=list, reducer=append_items)

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        collected: Dict[str, StateField] = {}
        for base in reversed(cls.__mro__):
            for name, value in vars(base).items():
                if isinstance(value, StateField):
                    collected[name] = value
        cls.fields = MappingProxyType(collected)

    @classmethod
    def initial(cls, values: Optional[Mapping[str, Any]] = None) -> GraphState:
        """Build a fully populated state from defaults, overlaid with `values` as given."""
        data = {name: f.make_default() for name, f in cls.fields.items()}
        for key, value in (values or {}).items():
            if key not in cls.fields:
                logger.debug("Ignoring unknown initial state field. schema=%s field=%s", cls.__name__, key)
                continue
            data[key] = copy.deepcopy(value)
        return GraphState(cls, data)

    @classmethod
    def merge(cls, state: GraphState, update: Optional[Mapping[str, Any]]) -> GraphState:
        """Apply a partial update through each field's reducer and return the new state."""
        if not update:
            return state
        data = dict(state.items())
        for key, incoming in update.items():
            declared = cls.fields.get(key)
            if declared is None:
                logger.debug("Ignoring unknown state update field. schema=%s field=%s", cls.__name__, key)
                continue
            data[key] = declared.reducer(data[key], incoming)
        return GraphState(cls, data)
