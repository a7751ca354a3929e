"""
Administrative account management: accounts, role membership, audit trail
and the REST endpoints that drive them.
"""
