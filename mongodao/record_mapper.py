import dataclasses
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar, Union, Annotated, get_type_hints, get_args, get_origin

from pydantic import BaseModel, ValidationError

from dao_errors import MappingError
from document_model import MongoId, Stored, Transient

logger = logging.getLogger(__name__)

T = TypeVar('T')

ID_KEY = "_id"

VALUE = "value"
ID = "id"
TRANSIENT = "transient"


@dataclass(frozen=True)
class FieldSpec:
    """One row of a type's field mapping table."""
    attr: str
    key: str
    kind: str = VALUE
    nested: Optional[type] = None
    many: bool = False
    init: bool = True


def _has_marker(metadata: Tuple[Any, ...], marker: type) -> Optional[Any]:
    for m in metadata:
        if m is marker or isinstance(m, marker):
            return m
    return None


def _unwrap_optional(hint: Any) -> Any:
    if get_origin(hint) is Union:
        args = [a for a in get_args(hint) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


def _nested_type(hint: Any) -> Tuple[Optional[type], bool]:
    """Returns (dataclass type, is_list) when hint describes a sub-document."""
    hint = _unwrap_optional(hint)
    if isinstance(hint, type) and dataclasses.is_dataclass(hint):
        return hint, False
    if get_origin(hint) in (list, List):
        args = get_args(hint)
        if args:
            inner = _unwrap_optional(args[0])
            if isinstance(inner, type) and dataclasses.is_dataclass(inner):
                return inner, True
    return None, False


@lru_cache(maxsize=None)
def field_table(cls: type) -> Tuple[FieldSpec, ...]:
    """
    Builds the field mapping table of a dataclass type once, from its fields
    and their Annotated markers (MongoId, Stored, Transient).
    """
    if not (isinstance(cls, type) and dataclasses.is_dataclass(cls)):
        raise MappingError(f"{cls!r} is not a mapped type (expected a dataclass)")
    try:
        hints = get_type_hints(cls, include_extras=True)
    except Exception as e:
        raise MappingError(f"cannot resolve field types of {cls.__name__}: {e}") from e

    specs = []
    seen: Dict[str, str] = {}
    for f in dataclasses.fields(cls):
        hint = hints.get(f.name, Any)
        metadata: Tuple[Any, ...] = ()
        if get_origin(hint) is Annotated:
            metadata = get_args(hint)[1:]
            hint = get_args(hint)[0]

        kind = VALUE
        key = f.name
        if _has_marker(metadata, Transient):
            kind = TRANSIENT
        elif _has_marker(metadata, MongoId):
            kind = ID
            key = ID_KEY
        else:
            stored = _has_marker(metadata, Stored)
            if isinstance(stored, Stored):
                key = stored.name

        if kind != TRANSIENT:
            if key in seen:
                raise MappingError(
                    f"{cls.__name__}: fields {seen[key]!r} and {f.name!r} both map to key {key!r}"
                )
            seen[key] = f.name

        nested, many = _nested_type(hint)
        specs.append(FieldSpec(f.name, key, kind, nested, many, f.init))
    return tuple(specs)


def is_mapped_type(cls: Any) -> bool:
    if isinstance(cls, type) and issubclass(cls, BaseModel):
        return True
    return isinstance(cls, type) and dataclasses.is_dataclass(cls)


def to_record(obj: Any) -> Dict[str, Any]:
    """Copies every mapped field of obj into a new record."""
    if obj is None or isinstance(obj, type):
        raise MappingError(f"cannot map {obj!r} to a record")
    if isinstance(obj, BaseModel):
        dumped = obj.model_dump(by_alias=True, exclude_none=False)
        if ID_KEY in dumped and dumped[ID_KEY] is None:
            del dumped[ID_KEY]
        return dumped

    record: Dict[str, Any] = {}
    for spec in field_table(type(obj)):
        if spec.kind == TRANSIENT:
            continue
        try:
            value = getattr(obj, spec.attr)
        except AttributeError as e:
            raise MappingError(f"{type(obj).__name__}.{spec.attr} is not accessible: {e}") from e
        if spec.kind == ID and value is None:
            continue
        record[spec.key] = _dump_value(spec, value)
    return record


def _dump_value(spec: FieldSpec, value: Any) -> Any:
    if spec.nested is None or value is None:
        return value
    if spec.many:
        return [to_record(v) if v is not None else None for v in value]
    return to_record(value)


def to_object(cls: Type[T], record: Optional[Mapping[str, Any]]) -> Optional[T]:
    """
    Builds a new cls instance from record. Returns None when record is None;
    keys without a mapped field are ignored.
    """
    if record is None:
        return None
    if not isinstance(record, Mapping):
        raise MappingError(f"cannot build {getattr(cls, '__name__', cls)} from {type(record).__name__}")
    if isinstance(cls, type) and issubclass(cls, BaseModel):
        try:
            return cls.model_validate(dict(record))
        except ValidationError as e:
            raise MappingError(f"cannot build {cls.__name__}: {e}") from e

    kwargs = {}
    late = {}
    for spec in field_table(cls):
        if spec.kind == TRANSIENT or spec.key not in record:
            continue
        value = _load_value(cls, spec, record[spec.key])
        if spec.init:
            kwargs[spec.attr] = value
        else:
            late[spec.attr] = value

    try:
        obj = cls(**kwargs)
    except TypeError as e:
        raise MappingError(f"cannot instantiate {cls.__name__} from record: {e}") from e
    for attr, value in late.items():
        object.__setattr__(obj, attr, value)
    return obj


def _load_value(owner: type, spec: FieldSpec, value: Any) -> Any:
    if spec.nested is None or value is None:
        return value
    if spec.many:
        if not isinstance(value, list):
            raise MappingError(
                f"{owner.__name__}.{spec.attr}: expected a list of documents, got {type(value).__name__}"
            )
        return [to_object(spec.nested, v) for v in value]
    if not isinstance(value, Mapping):
        raise MappingError(
            f"{owner.__name__}.{spec.attr}: expected a document, got {type(value).__name__}"
        )
    return to_object(spec.nested, value)


def field_key(cls: type, path: str) -> str:
    """
    Resolves an attribute path ("address.city") to its record key path.
    Unknown segments are passed through unchanged, so record keys work too.
    """
    keys = []
    current: Optional[type] = cls
    for part in path.split("."):
        if current is None:
            keys.append(part)
            continue
        if issubclass(current, BaseModel):
            info = current.model_fields.get(part)
            keys.append(info.alias if info is not None and info.alias else part)
            current = None
            continue
        spec = next((s for s in field_table(current) if s.attr == part), None)
        if spec is None:
            keys.append(part)
            current = None
        else:
            keys.append(spec.key)
            current = spec.nested
    return ".".join(keys)


def assign_id(obj: Any, inserted_id: Any) -> None:
    """Writes a server-assigned _id back to the object's MongoId field, if unset."""
    if isinstance(obj, BaseModel):
        attr = next((name for name, info in type(obj).model_fields.items()
                     if (info.alias or name) == ID_KEY), None)
    elif dataclasses.is_dataclass(obj):
        attr = next((s.attr for s in field_table(type(obj)) if s.kind == ID), None)
    else:
        return
    if attr is not None and getattr(obj, attr, None) is None:
        # bypasses validate_assignment and frozen models
        object.__setattr__(obj, attr, inserted_id)
        logger.debug("assigned _id %r to %s.%s", inserted_id, type(obj).__name__, attr)
