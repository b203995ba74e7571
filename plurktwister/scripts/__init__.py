"""
Command line scripts.
"""
