"""Schema DDL and parameterized SQL used by the quote engine services."""
