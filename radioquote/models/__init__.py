"""Pydantic models and enums for the Radio Quote Engine."""
