"""
reqgraph - A structured record store for software requirements.

This package provides tools for:
- Assigning human-facing requirement IDs under configurable numbering policies
- Validating typed relationships between requirements (cardinality, types, cycles)
- Persisting the store as a YAML document or a SQLite database
- Migrating losslessly between backends and a JSON interchange document
"""

__version__ = "0.1.0"
