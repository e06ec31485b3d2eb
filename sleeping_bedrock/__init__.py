"""Sleeping Bedrock Listener

A Python service that stands in for a stopped Minecraft Bedrock server,
turning away players with a message and waking the real server when they try to join.
"""

__version__ = "1.0.0"
__author__ = "Sleeping Bedrock"
