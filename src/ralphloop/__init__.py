"""Ralph loop: run a queue of tasks through parallel headless worker processes."""

__version__ = "0.1.0"
