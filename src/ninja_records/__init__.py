"""Ninja Records — generic record engine over MongoDB."""

from ninja_records.connections import ConnectionManager, MongoConfig, connect
from ninja_records.examples import ExampleObject
from ninja_records.exceptions import (
    ConnectionFailedError,
    InternalError,
    InvalidIDError,
    PersistenceError,
    RecordNotFoundError,
    TransactionError,
    UnsupportedTypeError,
)
from ninja_records.mapper import DefaultClaims, Mappable, resolve_collection
from ninja_records.model import Model
from ninja_records.pipelines import sort_by_popular
from ninja_records.query import Query, parse_object_id, query_id
from ninja_records.transaction import ExecutionContext, TxState

__all__ = [
    "ConnectionFailedError",
    "ConnectionManager",
    "DefaultClaims",
    "ExampleObject",
    "ExecutionContext",
    "InternalError",
    "InvalidIDError",
    "Mappable",
    "Model",
    "MongoConfig",
    "PersistenceError",
    "Query",
    "RecordNotFoundError",
    "TransactionError",
    "TxState",
    "UnsupportedTypeError",
    "connect",
    "parse_object_id",
    "query_id",
    "resolve_collection",
    "sort_by_popular",
]
