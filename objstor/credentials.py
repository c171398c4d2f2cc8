# Copyright (c) 2010-2012 OpenStack, LLC.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or
# implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Credential resolution and the persisted credential store.

The store is a small file of shell assignments::

    APIUSER='myusername'
    APIKEY='mykey'
    APIURL='https://swift.server.url/auth'

so that it may also be sourced by a shell.
"""
import collections
import logging
import os
import shlex

from os import environ
from os.path import expanduser, isfile

from objstor.exceptions import MissingCredentials

logger = logging.getLogger("objstor.credentials")

DEFAULT_CREDENTIAL_FILE = '~/.objstor'

#: Store variable name for each Credentials field, in file order.
STORE_FIELDS = collections.OrderedDict([
    ('user', 'APIUSER'),
    ('key', 'APIKEY'),
    ('auth_url', 'APIURL'),
])

Credentials = collections.namedtuple('Credentials',
                                     ['user', 'key', 'auth_url'])


def credential_file_path(path=None):
    """
    Location of the credential store.

    :param path: explicit location; when None the ``OBJSTOR_CREDENTIALS``
                 environment variable is used, then ``~/.objstor``
    """
    if path is None:
        path = environ.get('OBJSTOR_CREDENTIALS') or DEFAULT_CREDENTIAL_FILE
    return expanduser(path)


def is_complete(credentials):
    return all(credentials)


def load_credentials(path=None):
    """
    Read the credential store.

    :returns: a dict with ``user``, ``key`` and ``auth_url`` keys for every
              field the store assigns; an empty dict if it does not exist
    """
    path = credential_file_path(path)
    if not isfile(path):
        logger.debug('No credential file at %s', path)
        return {}
    names = dict((v, k) for k, v in STORE_FIELDS.items())
    loaded = {}
    with open(path) as fp:
        for line in fp:
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            try:
                tokens = shlex.split(line, comments=True)
            except ValueError:
                logger.warning('Ignoring unparsable line in %s', path)
                continue
            if tokens and tokens[0] == 'export':
                tokens = tokens[1:]
            if not tokens:
                continue
            name, sep, value = tokens[0].partition('=')
            if sep and name in names:
                loaded[names[name]] = value
    return loaded


def resolve_credentials(user=None, key=None, auth_url=None, path=None):
    """
    Produce complete :class:`Credentials`.

    Explicit values take precedence over anything in the store; the store
    is only read when at least one explicit value is missing.

    :raises MissingCredentials: a field is still missing after the merge,
                                or the store is needed and does not exist
    """
    overrides = Credentials(user, key, auth_url)
    if is_complete(overrides):
        return overrides

    path = credential_file_path(path)
    if not isfile(path):
        raise MissingCredentials(
            'ERROR: Credentials not supplied, and could not read '
            'credential file!')

    stored = load_credentials(path)
    merged = Credentials(*[
        value or stored.get(field)
        for field, value in zip(Credentials._fields, overrides)])
    if not is_complete(merged):
        raise MissingCredentials(
            'ERROR: All credential information not supplied!')
    return merged


def save_credentials(credentials, path=None):
    """
    Write ``credentials`` to the store, replacing any previous content.

    :raises MissingCredentials: if any field is empty; nothing is written
    """
    if not is_complete(credentials):
        raise MissingCredentials('ERROR: Missing all credential parameters!')

    path = credential_file_path(path)
    lines = ['%s=%s\n' % (name, shlex.quote(getattr(credentials, field)))
             for field, name in STORE_FIELDS.items()]
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w') as fp:
        fp.writelines(lines)
    logger.debug('Saved credentials to %s', path)
    return path
