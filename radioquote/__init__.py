"""
Radio Quote Engine Package.

FastAPI service layer that turns two-way radio system recommendations into
priced, line-itemized quotes, gates them behind business-safety limits, and
learns from won/lost outcomes.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, dependencies, audit log, errors
    - models: Pydantic schemas and enums
    - services: Quote assembly, totals, validation, learning, monitoring
    - sql: Schema DDL and parameterized SQL queries
"""

__version__ = "1.0.0"
