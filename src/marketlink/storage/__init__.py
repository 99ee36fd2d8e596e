"""DuckDB persistence: schema, connection pool, markets, taxonomy, sync audit log."""
