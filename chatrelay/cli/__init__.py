"""CLI module for chatrelay."""
