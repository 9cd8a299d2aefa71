"""Services for the agent bridge."""
