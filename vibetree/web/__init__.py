"""Web server for VibeTree."""
