"""Plex marker editor - bulk editing of intro, credits and ad markers."""

__version__ = "0.4.0"
