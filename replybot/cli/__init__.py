"""Command-line interface for ReplyBot."""
