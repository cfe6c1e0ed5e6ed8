"""sms/ -- Outbound SMS delivery.

Layer rule: sms/ imports from core/ and audit/ only.
"""
