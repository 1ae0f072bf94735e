"""Shared test doubles and model declarations."""
