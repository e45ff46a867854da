"""Shared models used across the parser, planner and executor."""
