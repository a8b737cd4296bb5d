"""Utility module for the FTPS session client.

This module provides cross-cutting utilities:
- Logging: Configured logging with credential redaction
- Validators: Input validation for host, port and timeouts
"""
