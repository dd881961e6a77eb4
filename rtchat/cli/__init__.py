"""CLI module for rtchat."""
