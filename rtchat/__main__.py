"""
Entry point for running rtchat as a module: python -m rtchat
"""

from rtchat.cli.commands import app

if __name__ == "__main__":
    app()
