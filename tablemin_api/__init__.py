"""HTTP transport for the tablemin engine."""
