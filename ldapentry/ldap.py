# Every connection this package opens goes through this module so that tests
# can patch ``ldapentry.ldap.initialize`` with python-ldap-faker.
import ldap
from ldap import *  # noqa: F403

__version__ = ldap.__version__
