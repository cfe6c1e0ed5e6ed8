"""auth/ -- Authentication, token ledger and session package for O'secours.

Layer rule: auth/ imports from core/ and audit/ plus third-party libraries.
It does NOT import from api/, otp/, or sms/.
api/ imports from auth/, not the other way around.
"""
