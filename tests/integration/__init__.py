"""
Integration tests for legacymigrate.

SQLite tests run against in-memory aiosqlite databases. PostgreSQL tests
need a database, either via:
- testcontainers (automatic container provisioning)
- existing infrastructure

PostgreSQL tests are skipped automatically if Docker is not available.

Run integration tests:
    pytest tests/integration/ -v

Skip integration tests:
    pytest tests/ -v -m "not integration"
"""
