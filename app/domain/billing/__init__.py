"""Payment provider integration: booking checkout and webhooks"""
