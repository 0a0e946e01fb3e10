"""schemalink — link-graph consistency for a datatype schema registry."""

__version__ = "0.1.0"
