"""File system, buffer cache, redo log, pipes and file descriptors of a small teaching kernel."""

__version__ = "0.1.0"