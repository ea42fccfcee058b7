"""
CLI module for VideoReach
"""
