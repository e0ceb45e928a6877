"""Phase state machine deciding the single next action for a case."""
