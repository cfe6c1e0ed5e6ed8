"""otp/ -- Phone verification one-time passcodes.

Layer rule: otp/ imports from core/, audit/ and sms/ only. It does NOT import
from api/ or auth/.
"""
