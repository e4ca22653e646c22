"""Entry point for running ReplyBot as a module."""

from replybot.cli.commands import app

if __name__ == "__main__":
    app()
