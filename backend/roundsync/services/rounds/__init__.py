"""Round domain services: clock, state machine, flavors, queue, auto-reject."""
