"""CLI module for focusflow."""
