"""
focusflow - task assistant core with memory shared across conversations.
"""

__version__ = "0.1.0"
