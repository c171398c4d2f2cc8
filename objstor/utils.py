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
"""Miscellaneous utility functions for use with objstor."""
import collections
import gzip
import hashlib
import io
import time
import traceback

EMPTY_ETAG = 'd41d8cd98f00b204e9800998ecf8427e'
DISK_BUFFER = 2 ** 16
ACCOUNT_HEADER_PREFIX = 'x-account'

ResponseMetadata = collections.namedtuple(
    'ResponseMetadata', ['status', 'etag', 'account_headers'])


def normalize_path(path):
    """
    Return the absolute object path form of a user supplied path.

    ``container`` and ``/container`` both become ``/container``; a path
    that already starts with a slash is returned unchanged.
    """
    path = path or ''
    if not path.startswith('/'):
        path = '/' + path
    return path


def normalize_container_path(path):
    """
    Like :func:`normalize_path` but the result always ends with a slash,
    ready to have an object name appended.
    """
    path = normalize_path(path)
    if not path.endswith('/'):
        path += '/'
    return path


def object_name_for(local_path):
    """Object name to use when uploading ``local_path``."""
    if local_path.startswith('./') or local_path.startswith('.\\'):
        local_path = local_path[2:]
    return local_path.lstrip('/')


def file_md5(path, chunk_size=DISK_BUFFER):
    """Hex MD5 digest of a local file, read in ``chunk_size`` pieces."""
    md5sum = hashlib.md5()
    with open(path, 'rb') as fp:
        while True:
            data = fp.read(chunk_size)
            if not data:
                break
            md5sum.update(data)
    return md5sum.hexdigest()


def parse_code(resp):
    """Numeric HTTP status of a response."""
    return int(resp.status)


def parse_identity(headers):
    """
    The content-identity fingerprint (ETag) found in ``headers``, or None.

    Swift quotes the ETag on some responses; surrounding quotes, whitespace
    and carriage returns are dropped and the value is lower-cased so it can
    be compared with a local hex digest.
    """
    etag = headers.get('etag')
    if etag is None:
        return None
    etag = etag.strip().strip('"').lower()
    return etag or None


def parse_account_usage(headers):
    """
    All account usage headers (``X-Account-*``), sorted by name.

    :param headers: a mapping of response headers
    :returns: an OrderedDict of header name to value
    """
    usage = collections.OrderedDict()
    for name in sorted(headers, key=lambda k: k.lower()):
        if name.lower().startswith(ACCOUNT_HEADER_PREFIX):
            usage[name] = headers[name].strip()
    return usage


def parse_response_metadata(resp):
    """Build a :class:`ResponseMetadata` from a client response."""
    return ResponseMetadata(parse_code(resp),
                            parse_identity(resp.headers),
                            parse_account_usage(resp.headers))


def get_body(headers, body):
    if headers.get('content-encoding') == 'gzip':
        with gzip.GzipFile(fileobj=io.BytesIO(body), mode='r') as gz:
            nbody = gz.read()
        return nbody
    return body


def parse_listing(headers, body):
    """Plain text listing body as a str."""
    body = get_body(headers, body)
    if isinstance(body, str):
        return body
    charset = 'utf-8'
    # Swift *should* be speaking UTF-8, but check content-type just in case
    content_type = headers.get('content-type', '')
    if '; charset=' in content_type:
        charset = content_type.split('; charset=', 1)[1].split(';', 1)[0]
    return body.decode(charset)


def report_traceback():
    """
    Reports a timestamp and full traceback for a given exception.

    :return: Full traceback and timestamp.
    """
    formatted_lines = traceback.format_exc()
    now = time.time()
    return formatted_lines, now
