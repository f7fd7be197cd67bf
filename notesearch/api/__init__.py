"""Notesearch REST API package.

Sub-modules expose FastAPI routers:
- search: search queries and index maintenance
"""
