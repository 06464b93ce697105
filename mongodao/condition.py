from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Tuple, Union


class Operator(str, Enum):
    """Leaf operators: comparisons for filters, the rest for updates."""
    # Comparison
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NIN = "nin"
    EXISTS = "exists"
    REGEX = "regex"
    SIZE = "size"
    ALL = "all"
    # Update
    SET = "set"
    UNSET = "unset"
    INC = "inc"
    PUSH = "push"
    PULL = "pull"
    ADD_TO_SET = "add_to_set"

    @property
    def is_update(self) -> bool:
        return self in UPDATE_OPERATORS


UPDATE_OPERATORS = frozenset({
    Operator.SET, Operator.UNSET, Operator.INC,
    Operator.PUSH, Operator.PULL, Operator.ADD_TO_SET,
})


class Logical(str, Enum):
    AND = "and"
    OR = "or"
    NOR = "nor"
    NOT = "not"


def _coerce(enum_type, value):
    try:
        return enum_type(value)
    except ValueError:
        # left as given; the translator reports it
        return value


@dataclass(frozen=True)
class Condition:
    """Base of the condition tree. Nodes are immutable once built."""

    def __and__(self, other: "Condition") -> "LogicalCondition":
        return and_(self, other)

    def __or__(self, other: "Condition") -> "LogicalCondition":
        return or_(self, other)

    def __invert__(self) -> "LogicalCondition":
        return not_(self)


@dataclass(frozen=True)
class FieldCondition(Condition):
    """Leaf: field <operator> value."""
    field: str
    operator: Union[Operator, str]
    value: Any = None

    def __post_init__(self):
        object.__setattr__(self, "operator", _coerce(Operator, self.operator))

    def __str__(self) -> str:
        op = self.operator.value if isinstance(self.operator, Operator) else self.operator
        return f"{self.field} {op} {self.value!r}"


@dataclass(frozen=True)
class LogicalCondition(Condition):
    """Composite: a logical operator over sub-conditions."""
    operator: Union[Logical, str]
    children: Tuple[Any, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "operator", _coerce(Logical, self.operator))
        object.__setattr__(self, "children", tuple(self.children))

    def __str__(self) -> str:
        op = self.operator.value if isinstance(self.operator, Logical) else self.operator
        return f"{op.upper()}({', '.join(str(c) for c in self.children)})"


def _combine(op: Logical, conditions: Iterable[Condition]) -> LogicalCondition:
    # a & b & c builds one flat AND rather than a nested chain
    children = []
    for c in conditions:
        if isinstance(c, LogicalCondition) and c.operator == op and op in (Logical.AND, Logical.OR):
            children.extend(c.children)
        else:
            children.append(c)
    return LogicalCondition(op, tuple(children))


def and_(*conditions: Condition) -> LogicalCondition:
    return _combine(Logical.AND, conditions)


def or_(*conditions: Condition) -> LogicalCondition:
    return _combine(Logical.OR, conditions)


def nor(*conditions: Condition) -> LogicalCondition:
    return LogicalCondition(Logical.NOR, conditions)


def not_(condition: Condition) -> LogicalCondition:
    return LogicalCondition(Logical.NOT, (condition,))


class FieldRef:
    """
    Builder for leaves on one field:

        where("age").gte(18) & where("name").regex("^A")
        where("visits").inc(1) & where("seen").set(True)
    """

    def __init__(self, name: str):
        self.name = name

    def _leaf(self, op: Operator, value: Any = None) -> FieldCondition:
        return FieldCondition(self.name, op, value)

    def eq(self, value): return self._leaf(Operator.EQ, value)
    def ne(self, value): return self._leaf(Operator.NE, value)
    def gt(self, value): return self._leaf(Operator.GT, value)
    def gte(self, value): return self._leaf(Operator.GTE, value)
    def lt(self, value): return self._leaf(Operator.LT, value)
    def lte(self, value): return self._leaf(Operator.LTE, value)

    def in_(self, values: Iterable[Any]) -> FieldCondition:
        return self._leaf(Operator.IN, list(values))

    def nin(self, values: Iterable[Any]) -> FieldCondition:
        return self._leaf(Operator.NIN, list(values))

    def exists(self, flag: bool = True) -> FieldCondition:
        return self._leaf(Operator.EXISTS, flag)

    def regex(self, pattern: str) -> FieldCondition:
        return self._leaf(Operator.REGEX, pattern)

    def size(self, n: int) -> FieldCondition:
        return self._leaf(Operator.SIZE, n)

    def all(self, values: Iterable[Any]) -> FieldCondition:
        return self._leaf(Operator.ALL, list(values))

    def set(self, value): return self._leaf(Operator.SET, value)
    def unset(self): return self._leaf(Operator.UNSET)
    def inc(self, amount=1): return self._leaf(Operator.INC, amount)
    def push(self, value): return self._leaf(Operator.PUSH, value)
    def pull(self, value): return self._leaf(Operator.PULL, value)
    def add_to_set(self, value): return self._leaf(Operator.ADD_TO_SET, value)

    def __repr__(self) -> str:
        return f"FieldRef({self.name!r})"


def where(name: str) -> FieldRef:
    return FieldRef(name)
