"""Backbone command line interface."""

from backbone.cli.main import main

__all__ = ["main"]
