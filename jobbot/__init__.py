"""LinkedIn Easy Apply automation: discovery, scoring, form filling and pacing."""

__version__ = "0.3.0"
