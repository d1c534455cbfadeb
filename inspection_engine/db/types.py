from __future__ import annotations

import json
from typing import Any

from sqlalchemy import Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


class JSONDocument(TypeDecorator):
    """
    JSON object column: JSONB on PostgreSQL, canonical JSON text elsewhere.

    Text storage sorts keys so identical payloads compare equal in SQL.
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):  # type: ignore[override]
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value: Any, dialect):  # type: ignore[override]
        if value is None or dialect.name == "postgresql":
            return value
        return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))

    def process_result_value(self, value: Any, dialect):  # type: ignore[override]
        if value is None or isinstance(value, (dict, list)):
            return value
        text = str(value).strip()
        if not text:
            return {}
        return json.loads(text)
