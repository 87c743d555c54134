"""Subcommand groups for the beads-vcs CLI."""
