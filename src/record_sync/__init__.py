"""record-sync: keep connection profiles, groups, tunnels and saved commands
in step across devices through a shared remote document store."""

__version__ = "0.1.0"
