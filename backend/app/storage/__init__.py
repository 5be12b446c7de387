from app.core.config import Settings
from app.storage.base import Store
from app.storage.file import FileStore
from app.storage.memory import MemoryStore
from app.storage.records import CodePurpose


def build_store(config: Settings) -> Store:
    """Create the store selected by STORAGE_BACKEND."""
    if config.STORAGE_BACKEND == "memory":
        return MemoryStore()

    if config.STORAGE_BACKEND == "file":
        return FileStore(config.DATA_DIR)

    from app.db.session import create_engine
    from app.storage.sql import SQLStore

    # SQLite deployments have no migration step; create tables on startup
    return SQLStore(create_engine(config.DATABASE_URL), create_tables=config.is_sqlite)


__all__ = ["CodePurpose", "FileStore", "MemoryStore", "Store", "build_store"]
