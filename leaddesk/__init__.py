"""Conversation session core for the lead-management dashboard."""
