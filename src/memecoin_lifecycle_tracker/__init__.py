"""Memecoin Lifecycle Tracker - signal outcome and smart-money candidate lifecycle engine."""

__version__ = "0.1.0"
