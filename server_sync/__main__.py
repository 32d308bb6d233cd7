"""
Run with: python -m server_sync
"""

from .main import main

main()
