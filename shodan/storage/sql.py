# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import logging
from typing import Iterable, List, Optional

from sqlalchemy import Column, LargeBinary, MetaData, String, Table, create_engine, delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from shodan.storage.base import Storage
from shodan.storage.informers import StorageInformer

logger = logging.getLogger(__name__)

metadata = MetaData()

records = Table(
    "records",
    metadata,
    Column("key", String(512), primary_key=True),
    Column("data", LargeBinary, nullable=False),
)


class StorageOpenError(RuntimeError):
    """Raised when the persistence layer cannot be opened at startup"""


class SQLStorage(Storage):
    """
    Durable storage backed by a single SQL table.

    The payload is opaque to the table, every key is a row and every operation runs in its
    own transaction, so a single key operation is atomic while a batch of keys is not.
    """

    def __init__(
        self,
        url: str = "sqlite:///shodan.db",
        informers: Optional[Iterable[StorageInformer]] = None,
        engine: Optional[Engine] = None,
    ):
        super().__init__(informers)
        try:
            self._engine = engine or create_engine(url, future=True)
            metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StorageOpenError(f"unable to open storage at {url!r}: {e}") from e
        logger.info(f"Opened storage at {self._engine.url!r}")

    def _get(self, key: str) -> Optional[bytes]:
        with self._engine.connect() as conn:
            row = conn.execute(select(records.c.data).where(records.c.key == key)).first()
        if row is None:
            return None
        return bytes(row.data)

    def _set(self, key: str, data: bytes) -> None:
        with self._engine.begin() as conn:
            result = conn.execute(update(records).where(records.c.key == key).values(data=data))
            if result.rowcount == 0:
                conn.execute(records.insert().values(key=key, data=data))

    def _delete(self, key: str) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(delete(records).where(records.c.key == key))
        return result.rowcount > 0

    def _keys(self) -> List[str]:
        with self._engine.connect() as conn:
            return [row.key for row in conn.execute(select(records.c.key))]

    def close(self) -> None:
        self._engine.dispose()
