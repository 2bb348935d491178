"""Pure domain value types: clock, actor, workflow definitions, events."""
