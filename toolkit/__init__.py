"""Shared helpers (ids, timestamps, logging setup) for NetSentry modules."""
