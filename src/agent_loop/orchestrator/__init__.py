"""Session, loop, hook and cancellation machinery behind the agent-loop CLI."""
