"""
Billing, moderation and engagement services
"""
