"""Click commands for engarde-wizard."""
