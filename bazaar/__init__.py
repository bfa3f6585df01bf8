"""Bazaar: local marketplace backend."""
