"""
PicoLink Command-Line Interface
===============================

This package provides the ``pclink`` command-line tool for managing
files on a MicroPython board. It is implemented as a Click-based CLI
application with help for every command.
"""

__all__ = ["pclink"]
