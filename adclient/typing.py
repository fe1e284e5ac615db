"""
Type aliases for raw directory data.

These mirror the shapes python-ldap hands back from ``search_s`` and accepts
for ``add_s``, so transports can pass them through without reshaping.
"""

AttributeValue = str | bytes
RawAttributes = dict[str, list[bytes]]
LDAPData = tuple[str, RawAttributes]
AddModlist = list[tuple[str, list[bytes]]]
ReplaceModlist = list[tuple[int, str, list[bytes]]]
