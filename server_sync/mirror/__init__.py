"""
Repository mirror: the persistent local clone that files are deployed from.
"""
