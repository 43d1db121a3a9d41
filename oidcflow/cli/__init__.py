"""Command line interface for oidcflow."""
