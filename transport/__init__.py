"""Messaging platform transports."""
