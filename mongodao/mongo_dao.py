import logging
import weakref
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Generic, Iterable, Iterator, List, Optional, Sequence, Tuple, Type, TypeVar, Union, get_args, get_origin

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from condition import Condition
from dao_errors import ClosedResourceError, MappingError
from document_model import CollectionMeta, collection_meta
from mongo_connection import ClientRegistry, ServerLike, default_registry, to_servers
from query_translator import translate, translate_update
from record_mapper import ID_KEY, assign_id, field_key, is_mapped_type, to_object, to_record

logger = logging.getLogger(__name__)

T = TypeVar('T')

SortSpec = Union[str, Sequence[Union[str, Tuple[str, int]]]]


@dataclass(frozen=True)
class WriteOutcome:
    matched_count: int
    modified_count: int
    upserted_id: Any = None


class ResultSet(Iterator[T]):
    """
    Lazy, forward-only view over a server cursor. Each record is mapped when
    it is fetched. Once exhausted or closed it yields nothing more; once its
    DAO is closed it raises ClosedResourceError.
    """

    def __init__(self, model_type: Type[T], cursor, owner: "MongoDao"):
        self._model_type = model_type
        self._cursor = cursor
        self._owner = owner

    def __iter__(self) -> "ResultSet[T]":
        return self

    def __next__(self) -> T:
        self._owner._check_open()
        if self._cursor is None:
            raise StopIteration
        try:
            record = next(self._cursor)
        except StopIteration:
            self.close()
            raise
        except PyMongoError as e:
            self._owner._log_failure("fetch", e)
            raise
        return to_object(self._model_type, record)

    @property
    def exhausted(self) -> bool:
        return self._cursor is None

    def close(self):
        if self._cursor is not None:
            cursor, self._cursor = self._cursor, None
            cursor.close()

    def __enter__(self) -> "ResultSet[T]":
        return self

    def __exit__(self, *exc):
        self.close()


def _model_type_from_subclass(cls: type) -> Optional[type]:
    # class UserDao(MongoDao[User]) carries User in its generic base
    for klass in cls.__mro__:
        for base in getattr(klass, "__orig_bases__", ()):
            if get_origin(base) is MongoDao:
                args = get_args(base)
                if args and isinstance(args[0], type):
                    return args[0]
    return None


class MongoDao(Generic[T]):
    """
    CRUD access to the collection a domain type is stored in.

    Either pass the type explicitly or subclass with it:

        dao = MongoDao([("localhost", 27017)], User)
        class UserDao(MongoDao[User]): ...

    Construction fails with MetadataError/ConfigurationError/MappingError
    before any connection is acquired.
    """

    def __init__(
        self,
        servers: Iterable[ServerLike],
        model_type: Optional[Type[T]] = None,
        meta: Optional[CollectionMeta] = None,
        registry: Optional[ClientRegistry] = None,
        **client_kwargs: Any,
    ):
        model_type = model_type or _model_type_from_subclass(type(self))
        if model_type is None:
            raise MappingError(f"{type(self).__name__}: no model type given")
        if not is_mapped_type(model_type):
            raise MappingError(f"{model_type!r} is not a mapped type")
        self.model_type: Type[T] = model_type
        self.meta = collection_meta(model_type, meta)
        self._servers = to_servers(servers)
        self._registry = registry or default_registry

        client = self._registry.acquire(self._servers, **client_kwargs)
        try:
            self._db = client[self.meta.database_name]
            self._collection = self._db[self.meta.collection_name]
        except Exception:
            self._registry.release(self._servers)
            raise
        self._closed = False
        self._result_sets = weakref.WeakSet()
        logger.info("dao for %s on %s.%s ready", model_type.__name__,
                    self.meta.database_name, self.meta.collection_name)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def collection(self):
        self._check_open()
        return self._collection

    def _check_open(self):
        if self._closed:
            raise ClosedResourceError(
                f"dao for {self.meta.database_name}.{self.meta.collection_name} is closed"
            )

    def _resolve(self, path: str) -> str:
        return field_key(self.model_type, path)

    def _query(self, condition: Optional[Condition]) -> dict:
        self._check_open()
        logger.debug("before query: %s", condition)
        query = translate(condition, self._resolve)
        logger.debug("native query: %s", query)
        return query

    @contextmanager
    def _driver_call(self, action: str):
        self._check_open()
        try:
            yield
        except PyMongoError as e:
            self._log_failure(action, e)
            raise

    def _log_failure(self, action: str, error: Exception):
        logger.error("%s on %s.%s failed: %s", action, self.meta.database_name,
                     self.meta.collection_name, error)

    def _check_type(self, obj: Any):
        if not isinstance(obj, self.model_type):
            raise MappingError(f"expected {self.model_type.__name__}, got {type(obj).__name__}")

    def insert(self, obj: T) -> Any:
        self._check_open()
        self._check_type(obj)
        record = to_record(obj)
        with self._driver_call("insert"):
            result = self._collection.insert_one(record)
        assign_id(obj, result.inserted_id)
        return result.inserted_id

    def insert_many(self, objs: Iterable[T]) -> List[Any]:
        objs = list(objs)
        if not objs:
            self._check_open()
            return []
        for obj in objs:
            self._check_type(obj)
        records = [to_record(obj) for obj in objs]
        with self._driver_call("insert_many"):
            result = self._collection.insert_many(records)
        for obj, inserted_id in zip(objs, result.inserted_ids):
            assign_id(obj, inserted_id)
        return list(result.inserted_ids)

    def find_one(self, condition: Optional[Condition] = None) -> Optional[T]:
        query = self._query(condition)
        with self._driver_call("find_one"):
            record = self._collection.find_one(query)
        return to_object(self.model_type, record)

    def get_by_id(self, id: Any) -> Optional[T]:
        with self._driver_call("get_by_id"):
            record = self._collection.find_one({ID_KEY: id})
        return to_object(self.model_type, record)

    def find_many(
        self,
        condition: Optional[Condition] = None,
        sort: Optional[SortSpec] = None,
        limit: int = 0,
        skip: int = 0,
    ) -> ResultSet[T]:
        query = self._query(condition)
        with self._driver_call("find_many"):
            cursor = self._collection.find(query)
            if sort:
                cursor = cursor.sort(self._sort_spec(sort))
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
        results = ResultSet(self.model_type, cursor, self)
        self._result_sets.add(results)
        return results

    def _sort_spec(self, sort: SortSpec) -> List[Tuple[str, int]]:
        # "name", "-age" or [("age", -1), "name"]
        items = [sort] if isinstance(sort, str) else list(sort)
        spec = []
        for item in items:
            if isinstance(item, str):
                direction = DESCENDING if item.startswith("-") else ASCENDING
                spec.append((self._resolve(item.lstrip("+-")), direction))
            else:
                name, direction = item
                spec.append((self._resolve(name), direction))
        return spec

    def count(self, condition: Optional[Condition] = None) -> int:
        query = self._query(condition)
        with self._driver_call("count"):
            return self._collection.count_documents(query)

    def update_one(self, match: Optional[Condition], update: Condition) -> WriteOutcome:
        return self._update(match, update, upsert=False, multi=False)

    def update_all(self, match: Optional[Condition], update: Condition) -> WriteOutcome:
        return self._update(match, update, upsert=False, multi=True)

    def upsert(self, match: Optional[Condition], update: Condition) -> WriteOutcome:
        return self._update(match, update, upsert=True, multi=False)

    def _update(self, match: Optional[Condition], update: Condition, upsert: bool, multi: bool) -> WriteOutcome:
        query = self._query(match)
        document = translate_update(update, self._resolve)
        logger.debug("update (upsert=%s, multi=%s): %s", upsert, multi, document)
        with self._driver_call("update"):
            if multi:
                result = self._collection.update_many(query, document, upsert=upsert)
            else:
                result = self._collection.update_one(query, document, upsert=upsert)
        return WriteOutcome(result.matched_count, result.modified_count, result.upserted_id)

    def delete_one(self, condition: Optional[Condition]) -> int:
        query = self._query(condition)
        with self._driver_call("delete_one"):
            return self._collection.delete_one(query).deleted_count

    def delete_all(self, condition: Optional[Condition]) -> int:
        query = self._query(condition)
        with self._driver_call("delete_all"):
            return self._collection.delete_many(query).deleted_count

    def create_collection(self):
        name = self.meta.collection_name
        with self._driver_call("create_collection"):
            if name not in self._db.list_collection_names():
                self._db.create_collection(name)

    def drop_collection(self):
        with self._driver_call("drop_collection"):
            self._collection.drop()

    def close(self):
        if self._closed:
            return
        self._closed = True
        for results in list(self._result_sets):
            results.close()
        self._registry.release(self._servers)
        logger.info("dao for %s.%s closed", self.meta.database_name, self.meta.collection_name)

    def __enter__(self) -> "MongoDao[T]":
        return self

    def __exit__(self, *exc):
        self.close()
