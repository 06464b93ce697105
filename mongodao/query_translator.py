"""
Translates condition trees into MongoDB filter and update documents.

    translate(where("age").gte(18) & where("name").eq("ann"))
    # {"$and": [{"age": {"$gte": 18}}, {"name": "ann"}]}

    translate_update(where("visits").inc(1) & where("seen").set(True))
    # {"$inc": {"visits": 1}, "$set": {"seen": True}}
"""
import re
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional

from condition import Condition, FieldCondition, Logical, LogicalCondition, Operator
from dao_errors import ConditionError

FieldResolver = Callable[[str], str]

MONGO_OPERATORS = {
    Operator.EQ: "$eq",
    Operator.NE: "$ne",
    Operator.GT: "$gt",
    Operator.GTE: "$gte",
    Operator.LT: "$lt",
    Operator.LTE: "$lte",
    Operator.IN: "$in",
    Operator.NIN: "$nin",
    Operator.EXISTS: "$exists",
    Operator.REGEX: "$regex",
    Operator.SIZE: "$size",
    Operator.ALL: "$all",
    Operator.SET: "$set",
    Operator.UNSET: "$unset",
    Operator.INC: "$inc",
    Operator.PUSH: "$push",
    Operator.PULL: "$pull",
    Operator.ADD_TO_SET: "$addToSet",
}

MONGO_LOGICAL = {
    Logical.AND: "$and",
    Logical.OR: "$or",
    Logical.NOR: "$nor",
}

SEQUENCE_OPERATORS = (Operator.IN, Operator.NIN, Operator.ALL)


def _identity(path: str) -> str:
    return path


def translate(condition: Optional[Condition], field_resolver: Optional[FieldResolver] = None) -> Dict[str, Any]:
    """Filter document for condition; None matches every record."""
    if condition is None:
        return {}
    return _filter_node(condition, field_resolver or _identity)


def translate_update(condition: Optional[Condition], field_resolver: Optional[FieldResolver] = None) -> Dict[str, Any]:
    """Update document for a single update leaf or an AND of update leaves."""
    if condition is None:
        raise ConditionError("update condition is empty")
    resolve = field_resolver or _identity
    update: Dict[str, Dict[str, Any]] = {}
    seen = set()
    for leaf in _update_leaves(condition):
        key = _field(leaf, resolve)
        if key in seen:
            raise ConditionError(f"field {key!r} is updated more than once")
        seen.add(key)
        op = leaf.operator
        if op == Operator.INC and (isinstance(leaf.value, bool) or not isinstance(leaf.value, (int, float))):
            raise ConditionError(f"inc on {key!r} needs a number, got {leaf.value!r}")
        value = "" if op == Operator.UNSET else leaf.value
        update.setdefault(MONGO_OPERATORS[op], {})[key] = value
    if not update:
        raise ConditionError("update condition is empty")
    return update


def _update_leaves(node: Any) -> List[FieldCondition]:
    if isinstance(node, FieldCondition):
        if not isinstance(node.operator, Operator) or not node.operator.is_update:
            raise ConditionError(f"not an update operator: {node.operator!r} on {node.field!r}")
        return [node]
    if isinstance(node, LogicalCondition):
        if node.operator != Logical.AND:
            raise ConditionError(f"updates can only be combined with AND, not {node.operator!r}")
        leaves = []
        for child in node.children:
            leaves.extend(_update_leaves(child))
        return leaves
    raise ConditionError(f"malformed update node: {node!r}")


def _field(leaf: FieldCondition, resolve: FieldResolver) -> str:
    if not isinstance(leaf.field, str) or not leaf.field.strip():
        raise ConditionError(f"blank field in condition: {leaf!r}")
    return resolve(leaf.field.strip())


def _filter_node(node: Any, resolve: FieldResolver) -> Dict[str, Any]:
    if isinstance(node, FieldCondition):
        key = _field(node, resolve)
        op, value = _comparison(node)
        if op == Operator.EQ and not isinstance(value, Mapping):
            return {key: value}
        return {key: {MONGO_OPERATORS[op]: value}}
    if isinstance(node, LogicalCondition):
        return _logical(node, resolve)
    raise ConditionError(f"malformed condition node: {node!r}")


def _comparison(leaf: FieldCondition):
    op = leaf.operator
    if not isinstance(op, Operator):
        raise ConditionError(f"unknown operator {op!r} on {leaf.field!r}")
    if op.is_update:
        raise ConditionError(f"update operator {op.value!r} used in a filter on {leaf.field!r}")
    value = leaf.value
    if op in SEQUENCE_OPERATORS:
        if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, (list, tuple, set, frozenset)):
            raise ConditionError(f"{op.value} on {leaf.field!r} needs a list, got {value!r}")
        value = list(value)
    elif op == Operator.EXISTS and not isinstance(value, bool):
        raise ConditionError(f"exists on {leaf.field!r} needs a bool, got {value!r}")
    elif op == Operator.SIZE and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
        raise ConditionError(f"size on {leaf.field!r} needs a non-negative int, got {value!r}")
    elif op == Operator.REGEX and not isinstance(value, (str, re.Pattern)):
        raise ConditionError(f"regex on {leaf.field!r} needs a pattern, got {value!r}")
    return op, value


def _logical(node: LogicalCondition, resolve: FieldResolver) -> Dict[str, Any]:
    op = node.operator
    if not isinstance(op, Logical):
        raise ConditionError(f"unknown logical operator {op!r}")

    if op == Logical.NOT:
        if len(node.children) != 1:
            raise ConditionError(f"NOT takes exactly one condition, got {len(node.children)}")
        return _negate(node.children[0], resolve)

    children = [_filter_node(c, resolve) for c in node.children]
    if op == Logical.AND:
        if not children:
            return {}
        if len(children) == 1:
            return children[0]
    elif not children:
        raise ConditionError(f"{op.value.upper()} needs at least one condition")
    return {MONGO_LOGICAL[op]: children}


def _negate(child: Any, resolve: FieldResolver) -> Dict[str, Any]:
    if isinstance(child, FieldCondition):
        key = _field(child, resolve)
        op, value = _comparison(child)
        if op == Operator.EQ:
            return {key: {"$ne": value}}
        return {key: {"$not": {MONGO_OPERATORS[op]: value}}}
    if isinstance(child, LogicalCondition):
        return {"$nor": [_logical(child, resolve)]}
    raise ConditionError(f"malformed condition node: {child!r}")
