"""
ROCC SDK Command-Line Interface
===============================

This package provides the command-line tool for the ROCC SDK:

- **rocclink**: Authenticate, set the clock and download files over serial

The tool is implemented as a Click-based CLI application with
comprehensive help and error reporting.
"""

__all__ = ["rocclink"]
