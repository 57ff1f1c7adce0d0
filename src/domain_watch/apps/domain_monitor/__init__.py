"""Domain monitor service for the Doma domain-lifecycle event stream.

Poll the Doma event API with a durable cursor, store every event exactly
once, notify subscribers through webhooks, and keep incrementally updated
per-domain analytics for opportunity scoring. Runs against SQLite or
PostgreSQL via SQLAlchemy.
"""
