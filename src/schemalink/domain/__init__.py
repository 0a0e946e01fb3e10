"""Domain layer — types, errors, and pure graph rules.

This layer depends only on stdlib.
It must never import from services, infrastructure, commands, or config.
"""
