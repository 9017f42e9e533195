"""Remote tuning and auto-leveling for a four-corner suspension rig."""

__version__ = "0.1.0"
