"""
Tests for L{plurktwister}.
"""
