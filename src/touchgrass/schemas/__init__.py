"""Pydantic schemas for canonical events, groups and search documents."""
