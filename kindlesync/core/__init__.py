"""Authorization flow services."""
