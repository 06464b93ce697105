from dataclasses import dataclass
from typing import Callable, Optional, Type, TypeVar

from dao_errors import MetadataError

META_ATTR = "__collection_meta__"

T = TypeVar('T')


@dataclass(frozen=True)
class CollectionMeta:
    """Where documents of a type live: database and collection name."""
    database_name: str
    collection_name: str

    def validate(self) -> "CollectionMeta":
        db = (self.database_name or "").strip() if isinstance(self.database_name, str) else ""
        coll = (self.collection_name or "").strip() if isinstance(self.collection_name, str) else ""
        if not db or not coll:
            raise MetadataError(
                f"blank collection metadata: database_name={self.database_name!r}, "
                f"collection_name={self.collection_name!r}"
            )
        return self


@dataclass(frozen=True)
class Stored:
    """Marker for fields stored under a different record key."""
    name: str


@dataclass(frozen=True)
class MongoId:
    """Marker for the field holding the record's _id."""
    pass


@dataclass(frozen=True)
class Transient:
    """Marker for fields that are never written to a record."""
    pass


def document(database_name: str, collection_name: str) -> Callable[[Type[T]], Type[T]]:
    """
    Class decorator declaring the collection a domain type is stored in.
    The names are checked immediately so a bad declaration fails at import.
    """
    meta = CollectionMeta(database_name, collection_name).validate()

    def wrap(cls: Type[T]) -> Type[T]:
        setattr(cls, META_ATTR, meta)
        return cls

    return wrap


def collection_meta(cls: type, override: Optional[CollectionMeta] = None) -> CollectionMeta:
    """Resolve the metadata for cls, preferring an explicitly passed value."""
    meta = override if override is not None else getattr(cls, META_ATTR, None)
    if meta is None:
        raise MetadataError(f"no collection metadata on model: {getattr(cls, '__name__', cls)!r}")
    if not isinstance(meta, CollectionMeta):
        raise MetadataError(f"collection metadata on {cls!r} is not a CollectionMeta: {meta!r}")
    return meta.validate()
