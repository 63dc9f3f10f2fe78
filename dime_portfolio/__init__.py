"""Dime portfolio dashboard: Supabase-backed people / fund positions."""

__version__ = "0.1.0"
