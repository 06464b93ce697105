import logging
import threading
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pymongo import MongoClient

from dao_errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 27017


class MongoServer(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)

    @field_validator("host")
    @classmethod
    def host_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("host must not be blank")
        return v

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


ServerLike = Union[MongoServer, Tuple[str, int], str]


def to_server(value: ServerLike) -> MongoServer:
    """Accepts a MongoServer, a (host, port) pair or a "host:port" string."""
    try:
        if isinstance(value, MongoServer):
            return value
        if isinstance(value, str):
            host, sep, port = value.strip().rpartition(":")
            if not sep:
                return MongoServer(host=value)
            if not port.isdigit():
                raise ConfigurationError(f"invalid port in server address {value!r}")
            return MongoServer(host=host, port=int(port))
        host, port = value
        return MongoServer(host=host, port=port)
    except (ValidationError, TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid server address {value!r}: {e}") from e


def to_servers(servers: Iterable[ServerLike]) -> List[MongoServer]:
    if servers is None:
        raise ConfigurationError("no mongo servers given")
    result = [to_server(s) for s in servers]
    if not result:
        raise ConfigurationError("no mongo servers given")
    return result


def connect(servers: Iterable[ServerLike], **client_kwargs: Any) -> MongoClient:
    """Creates a client for the given addresses. The driver connects lazily."""
    hosts = [s.address for s in to_servers(servers)]
    logger.info("connecting to mongo at %s", ", ".join(hosts))
    return MongoClient(host=hosts, **client_kwargs)


RegistryKey = FrozenSet[Tuple[str, int]]


class ClientRegistry:
    """
    Shares one client per address list between DAOs. Each acquire must be
    paired with a release; the client is closed when the last user releases it.
    """

    def __init__(self, client_factory: Callable[..., Any] = connect):
        self._client_factory = client_factory
        self._lock = threading.Lock()
        self._clients: Dict[RegistryKey, Any] = {}
        self._refs: Dict[RegistryKey, int] = {}

    @staticmethod
    def key_for(servers: Iterable[ServerLike]) -> RegistryKey:
        return frozenset((s.host, s.port) for s in to_servers(servers))

    def acquire(self, servers: Iterable[ServerLike], **client_kwargs: Any) -> Any:
        servers = to_servers(servers)
        key = self.key_for(servers)
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = self._client_factory(servers, **client_kwargs)
                self._clients[key] = client
                self._refs[key] = 0
            self._refs[key] += 1
            logger.debug("acquired client for %s (refs=%d)", sorted(key), self._refs[key])
            return client

    def release(self, servers: Iterable[ServerLike]) -> None:
        key = self.key_for(servers)
        with self._lock:
            if key not in self._refs:
                return
            self._refs[key] -= 1
            if self._refs[key] > 0:
                return
            client = self._clients.pop(key)
            del self._refs[key]
        logger.info("closing mongo client for %s", sorted(key))
        client.close()

    def refs(self, servers: Iterable[ServerLike]) -> int:
        with self._lock:
            return self._refs.get(self.key_for(servers), 0)


default_registry = ClientRegistry()
