"""
Assistant Bot - a multi-specialist personal assistant over Telegram.

Incoming messages are coalesced per sender, classified into domain keywords,
handled concurrently by specialists (finance, todo, shopping list) and merged
into a single persona-voiced reply. Small talk falls back to a general
conversation specialist with short-term memory.
"""

__version__ = "1.0.0"
