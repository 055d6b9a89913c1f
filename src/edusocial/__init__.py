"""
EduSocial backend core: credit billing, media moderation and engagement batching
"""

__version__ = "0.1.0"
