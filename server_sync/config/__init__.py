"""
Configuration: environment, env file, and ownership resolution.
"""
