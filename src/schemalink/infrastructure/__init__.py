"""Infrastructure layer — database, graph snapshot, layouts, cache.

This layer depends on stdlib and third-party libs (SQLAlchemy, NetworkX).
It must never import from commands.
The service layer bridges between domain rules and infrastructure.
"""
