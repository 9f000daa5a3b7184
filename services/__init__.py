"""Persistence, session and collaborator services."""
