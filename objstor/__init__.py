# -*- encoding: utf-8 -*-
"""
Command line client for OpenStack Swift compatible object storage.
"""
from objstor.version import version_string as __version__  # noqa
from objstor.client import Connection, Session, get_auth  # noqa
from objstor.credentials import Credentials  # noqa
from objstor.exceptions import ClientException, ObjstorError  # noqa
