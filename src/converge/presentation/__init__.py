"""Terminal rendering of plans, run reports and state."""
