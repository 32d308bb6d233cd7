"""
server-sync: deploy context-selected files from a git branch to a server.
"""

__version__ = "0.1.0"
