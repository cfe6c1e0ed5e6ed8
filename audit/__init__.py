"""audit/ -- Security audit trail persisted alongside the credential data.

Layer rule: audit/ imports only core/ and third-party libraries. Every other
package may import from audit/.
"""
