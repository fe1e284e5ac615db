# This file is here so that we can patch the ldap module in our tests.
# python-ldap-faker patches ``<module>.ldap.initialize`` for each module listed
# in ``LDAPFakerMixin.ldap_modules``, so the transport must reach python-ldap
# through this module rather than importing ``ldap`` directly.
import ldap
from ldap import *  # noqa: F403
from ldap import filter  # noqa: A004

__version__ = ldap.__version__
