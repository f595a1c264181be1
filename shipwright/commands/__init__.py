"""
shipwright.commands - Repository maintenance commands.
"""
