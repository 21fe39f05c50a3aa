"""Auction finalization and race-points scoring service for fantasy cycling games."""

__version__ = "1.0.0"
