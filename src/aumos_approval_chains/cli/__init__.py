"""Command-line interface for aumos-approval-chains."""
