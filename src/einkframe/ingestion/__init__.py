"""Inbound message parsing.

Turns raw ``(topic, payload)`` pairs from the broker into typed
messages. Nothing in here mutates runtime state.
"""
