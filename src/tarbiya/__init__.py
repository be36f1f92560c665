"""Engagement engine for the Talaba-Tarbiya platform: points, streaks, badges and awards."""

__version__ = "0.1.0"
