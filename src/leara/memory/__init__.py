"""Memory & task knowledge engine.

Layout:
    models.py       Memory / Task / SessionContext records and query types
    interpreter.py  heuristic text interpretation (category, priority, dates, tags)
    query.py        filter-predicate builder shared by every table
    db.py           sqlite connection pool, schema, timestamp codec
    store.py        EntityStore: CRUD and upserts
    ranking.py      relevance scoring for search
    service.py      KnowledgeService: the API other subsystems call

Tables live in a single sqlite database (``memory``, ``tasks``,
``session_context``), by default at ``~/.leara/leara.db``.
"""
