"""CLI commands for binrunner.

Commands are loaded lazily by binrunner.cli.main.LazyGroup.
"""
