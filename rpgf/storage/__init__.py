"""
rpgf.storage: Relational persistence layer (SQLAlchemy 2.0).

Modules:
    schema:       declarative table definitions.
    session:      engine construction and Database.transaction().
    repositories: typed reads and writes over the schema.

PostgreSQL in production (pip install "rpgf[postgres]"), SQLite for tests
and local runs. Both support the INSERT ... ON CONFLICT upserts used here.
"""
