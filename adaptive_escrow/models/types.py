# adaptive_escrow/models/types.py
import uuid

from sqlalchemy.types import TypeDecorator
from sqlalchemy import JSON


class JSONBCompat(TypeDecorator):
    """
    JSONB on PostgreSQL, plain JSON on SQLite and the rest.
    Lets the same models run in tests (sqlite://) and production (postgresql://).
    """
    impl = JSON
    cache_ok = True

    def __init__(self, **jsonb_kwargs):
        super().__init__()
        self._jsonb_kwargs = jsonb_kwargs

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import JSONB
            return dialect.type_descriptor(JSONB(**self._jsonb_kwargs))
        return dialect.type_descriptor(JSON())


def new_uuid() -> str:
    return str(uuid.uuid4())
