"""Conversations, generation sessions and the service boundary."""
