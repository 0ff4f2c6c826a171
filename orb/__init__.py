"""Structured evaluation of code fragments in external interpreters."""
