import os
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, Field

from dao_errors import ConfigurationError
from document_model import CollectionMeta
from mongo_connection import MongoServer, to_server
from mongo_dao import MongoDao

T = TypeVar('T')

DEFAULT_SERVERS = "localhost:27017"
DEFAULT_CONNECT_TIMEOUT_MS = 5000


def parse_servers(text: str) -> List[MongoServer]:
    """Parses "host:port,host:port" into server addresses."""
    entries = [e.strip() for e in (text or "").split(",")]
    if not any(entries):
        raise ConfigurationError("MONGO_SERVERS is empty")
    if not all(entries):
        raise ConfigurationError(f"empty entry in server list {text!r}")
    return [to_server(e) for e in entries]


class MongoSettings(BaseModel):
    servers: List[MongoServer] = Field(default_factory=lambda: parse_servers(DEFAULT_SERVERS))
    connect_timeout_ms: int = Field(default=DEFAULT_CONNECT_TIMEOUT_MS, gt=0)
    app_name: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MongoSettings":
        env = os.environ if environ is None else environ
        timeout = env.get("MONGO_CONNECT_TIMEOUT_MS", str(DEFAULT_CONNECT_TIMEOUT_MS))
        if not timeout.strip().isdigit() or int(timeout) <= 0:
            raise ConfigurationError(f"MONGO_CONNECT_TIMEOUT_MS must be a positive integer, got {timeout!r}")
        return cls(
            servers=parse_servers((env.get("MONGO_SERVERS") or "").strip() or DEFAULT_SERVERS),
            connect_timeout_ms=int(timeout),
            app_name=env.get("MONGO_APP_NAME") or None,
        )

    def client_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"serverSelectionTimeoutMS": self.connect_timeout_ms}
        if self.app_name:
            kwargs["appname"] = self.app_name
        return kwargs


def get_dao(model_type: Type[T], settings: Optional[MongoSettings] = None,
            meta: Optional[CollectionMeta] = None, **kwargs) -> MongoDao[T]:
    settings = settings or MongoSettings.from_env()
    client_kwargs = settings.client_kwargs()
    client_kwargs.update(kwargs)
    return MongoDao(settings.servers, model_type, meta=meta, **client_kwargs)
