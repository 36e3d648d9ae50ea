"""
键值存储：本地缓存的底层存储。
TinyDBKeyValueStore 基于 TinyDB 持久化到 JSON 文件；MemoryKeyValueStore 仅驻留内存。
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict

from tinydb import Query, TinyDB

logger = logging.getLogger(__name__)

_DATA_DIR = Path(os.getenv("TILESYNC_ROOT", ".")) / "data"


class KeyValueStore(ABC):
    """按字符串 key 读写、删除字符串值。"""

    @abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set(self, key: str, value: str):
        ...

    @abstractmethod
    def remove(self, key: str):
        ...

    def close(self):
        pass


class MemoryKeyValueStore(KeyValueStore):

    def __init__(self, initial: Dict[str, str] | None = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str):
        self._data[key] = value

    def remove(self, key: str):
        self._data.pop(key, None)


class TinyDBKeyValueStore(KeyValueStore):
    """TinyDB 数据操作封装，每个 key 一条记录。"""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            db_path = _DATA_DIR / "cache.json"
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db = TinyDB(str(db_path), indent=2, ensure_ascii=False)
        self.table = self.db.table("kv")
        logger.info(f"TinyDB 数据库已打开: {db_path}")

    def get(self, key: str) -> str | None:
        Entry = Query()
        results = self.table.search(Entry.key == key)
        return results[0]["value"] if results else None

    def set(self, key: str, value: str):
        Entry = Query()
        record = {
            "key": key,
            "value": value,
            "updated_at": time.time(),
        }
        self.table.upsert(record, Entry.key == key)
        logger.debug(f"[{key}] 已写入本地存储")

    def remove(self, key: str):
        Entry = Query()
        self.table.remove(Entry.key == key)

    def close(self):
        """关闭数据库。"""
        self.db.close()
