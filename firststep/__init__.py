"""firststep: break a task into one first step and track it to done."""

__version__ = "0.1.0"
