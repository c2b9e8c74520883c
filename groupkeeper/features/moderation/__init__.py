"""
Moderation of group messages: link removal and content classification.
"""
