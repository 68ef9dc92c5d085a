def _normalize_db_url(url: str | None) -> str | None:
    # managed postgres hands out "postgres://" urls, the async engine needs the asyncpg driver
    if not url:
        return None
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url
