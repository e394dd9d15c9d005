"""Recipe import queue: action pipelines and note completion tracking."""

__version__ = "0.1.0"
