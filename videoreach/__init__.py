"""
VideoReach - Personalized Video Outreach Campaign Engine

Runs outreach campaigns that produce a distinct personalized video and
message package for every recipient, batching the work to stay inside
third-party API rate limits.
"""

__version__ = "0.1.0"
__author__ = "VideoReach Team"
