"""botfleet - supervisor and behavior engine for a fleet of game bots."""

__version__ = "1.0.0"
