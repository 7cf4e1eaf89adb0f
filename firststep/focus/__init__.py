"""Focus session state machine, controller and advisor."""
