"""
A client-side session manager for Active Directory over LDAP.
"""

__version__ = "1.0.0"
