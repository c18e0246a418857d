"""
Edge gateway service package.
"""
