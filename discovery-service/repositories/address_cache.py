import threading

from models.models import AddressEntry, CacheKey


class AddressCache:
    """
    本地只读缓存：CacheKey -> 最近一次成功观测到的 AddressEntry
    条目只整体替换，读取无需加锁；写入串行化，读方总能看到完整的旧值或新值
    """

    def __init__(self):
        self._entries: dict[CacheKey, AddressEntry] = {}
        self._write_lock = threading.Lock()

    def get(self, key: CacheKey) -> AddressEntry | None:
        """获取快照；不存在表示从未成功轮询过"""
        return self._entries.get(key)

    def put(self, key: CacheKey, entry: AddressEntry) -> None:
        """原子地插入或替换"""
        with self._write_lock:
            self._entries[key] = entry

    def index_of(self, key: CacheKey) -> int:
        entry = self._entries.get(key)
        return entry.index if entry else 0

    def keys(self) -> list[CacheKey]:
        with self._write_lock:
            return list(self._entries)

    def snapshot(self) -> dict[CacheKey, AddressEntry]:
        with self._write_lock:
            return dict(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
