"""Command line interface for binrunner."""
