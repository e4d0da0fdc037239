"""auth/ -- Credential store, password hashing, sessions, and reset tokens.

Layer rule: auth/ imports core/, the Mailer protocol from mail/, stdlib,
and third-party libraries. It does NOT import from api/ or media/.
api/ imports from auth/, not the other way around.
"""
