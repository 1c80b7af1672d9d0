"""Shared infrastructure: SQLite, HTTP, Playwright and scheduling."""
