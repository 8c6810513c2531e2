"""Access to the Plex Media Server database."""
