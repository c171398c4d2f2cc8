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
Swift object storage client used by the objstor tool.

Every request function takes an explicit :class:`Session` (storage URL and
token), issues exactly one HTTP request and hands back a :class:`Response`
so that callers can branch on the raw status code.  Nothing is retried.
"""
import collections
import logging
import os
import socket

import requests
from urllib3.exceptions import HTTPError as urllib_http_error
from requests.exceptions import RequestException
from requests.sessions import merge_hooks
from requests.structures import CaseInsensitiveDict
from urllib.parse import quote, unquote, urlparse

from objstor import version as objstor_version
from objstor.exceptions import (
    AuthenticationFailed, ClientException, HttpTransportError,
    UnexpectedStatusCode)
from objstor.utils import DISK_BUFFER

logger = logging.getLogger("objstor")
logger.addHandler(logging.NullHandler())

#: Default behaviour is to redact header values known to contain secrets,
#: such as ``X-Auth-Key`` and ``X-Auth-Token``. Up to the first 16 chars
#: may be revealed.
#:
#: To disable, set the value of ``redact_sensitive_headers`` to ``False``.
logger_settings = {
    'redact_sensitive_headers': True,
    'reveal_sensitive_prefix': 16
}
#: A list of sensitive headers to redact in logs. Note that when extending this
#: list, the header names must be added in all lower case.
LOGGER_SENSITIVE_HEADERS = [
    'x-auth-token', 'x-auth-key', 'x-storage-token', 'set-cookie'
]

DIRECTORY_CONTENT_TYPE = 'application/directory'

Session = collections.namedtuple('Session', ['storage_url', 'token'])
Response = collections.namedtuple('Response',
                                  ['status', 'reason', 'headers', 'body'])


def safe_value(name, value):
    """
    Only show up to logger_settings['reveal_sensitive_prefix'] characters
    from a sensitive header.

    :param name: Header name
    :param value: Header value
    :return: Safe header value
    """
    if name.lower() in LOGGER_SENSITIVE_HEADERS:
        prefix_length = logger_settings.get('reveal_sensitive_prefix', 16)
        prefix_length = int(
            min(prefix_length, (len(value) ** 2) / 32, len(value) / 2)
        )
        redacted_value = value[0:prefix_length]
        return redacted_value + '...'
    return value


def scrub_headers(headers):
    """
    Redact header values that can contain sensitive information that
    should not be logged.

    :param headers: Either a dict or an iterable of two-element tuples
    :return: Safe dictionary of headers with sensitive information removed
    """
    if isinstance(headers, dict):
        headers = headers.items()
    headers = [
        (parse_header_string(key), parse_header_string(val))
        for (key, val) in headers
    ]
    if not logger_settings.get('redact_sensitive_headers', True):
        return dict(headers)
    if logger_settings.get('reveal_sensitive_prefix', 16) < 0:
        logger_settings['reveal_sensitive_prefix'] = 16
    return {key: safe_value(key, val) for (key, val) in headers}


def http_log(args, kwargs, resp, body):
    if not logger.isEnabledFor(logging.INFO):
        return

    # create and log equivalent curl command
    string_parts = ['curl -i']
    for element in args:
        if element == 'HEAD':
            string_parts.append(' -I')
        elif element in ('GET', 'PUT', 'DELETE'):
            string_parts.append(' -X %s' % element)
        else:
            string_parts.append(' %s' % parse_header_string(element))
    if 'headers' in kwargs:
        headers = scrub_headers(kwargs['headers'])
        for element in headers:
            header = ' -H "%s: %s"' % (element, headers[element])
            string_parts.append(header)

    # log response as debug if good, or info if error
    if resp.status < 300:
        log_method = logger.debug
    else:
        log_method = logger.info

    log_method("REQ: %s", "".join(string_parts))
    log_method("RESP STATUS: %s %s", resp.status, resp.reason)
    log_method("RESP HEADERS: %s", scrub_headers(resp.getheaders()))
    if body:
        log_method("RESP BODY: %s", body)


def parse_header_string(data):
    if not isinstance(data, (str, bytes)):
        data = str(data)
    if isinstance(data, bytes):
        try:
            data = data.decode('ascii')
        except UnicodeDecodeError:
            data = quote(data)
    try:
        unquoted = unquote(data, errors='strict')
    except UnicodeDecodeError:
        return data
    return unquoted


def encode_utf8(value):
    if type(value) in (int, float, bool):
        value = str(value)
    if isinstance(value, str):
        value = value.encode('utf8')
    return value


class ObjstorRequestsSession(requests.Session):
    """
    A requests Session that never adds cookies or ~/.netrc credentials.

    Header values are sent as UTF-8 bytes so that user names, keys and
    object names outside of latin-1 survive the trip.
    """

    def prepare_request(self, request):
        p = requests.PreparedRequest()
        headers = CaseInsensitiveDict(
            (k, encode_utf8(v)) for k, v in (request.headers or {}).items())
        p.prepare(
            method=request.method.upper(),
            url=request.url,
            data=request.data,
            headers=headers,
            params=request.params,
            cookies=None,
            hooks=merge_hooks(request.hooks, self.hooks),
        )
        return p


class LowerKeyCaseInsensitiveDict(CaseInsensitiveDict):
    """
    CaseInsensitiveDict returning lower case keys for items()
    """

    def __iter__(self):
        return iter(self._store.keys())


def resp_header_dict(resp):
    resp_headers = LowerKeyCaseInsensitiveDict()
    for header, value in resp.getheaders():
        header = parse_header_string(header)
        # tolerate servers terminating header values with a stray \r
        resp_headers[header] = parse_header_string(value).strip()
    return resp_headers


class HTTPConnection:
    def __init__(self, url, default_user_agent=None):
        """
        Make an HTTPConnection or HTTPSConnection

        :param url: url to connect to
        :param default_user_agent: Set the User-Agent header on every request.
                                   If set to None (default), the user agent
                                   will be "objstor-<version>".
        :raises ClientException: Unable to handle protocol scheme
        """
        self.url = url
        self.parsed_url = urlparse(url)
        self.host = self.parsed_url.netloc
        self.port = self.parsed_url.port
        self.requests_args = {}
        self.request_session = ObjstorRequestsSession()
        # Don't use requests's default headers
        self.request_session.headers = None
        self.resp = None
        if self.parsed_url.scheme not in ('http', 'https'):
            raise ClientException('Unsupported scheme "%s" in url "%s"'
                                  % (self.parsed_url.scheme, url))
        self.requests_args['stream'] = True
        if default_user_agent is None:
            default_user_agent = \
                'objstor-%s' % objstor_version.version_string
        self.default_user_agent = default_user_agent

    def _request(self, *arg, **kwarg):
        """Final wrapper before requests call, to be patched in tests"""
        return self.request_session.request(*arg, **kwarg)

    def request(self, method, full_path, data=None, headers=None):
        """Encode url and header, then call requests.request"""
        headers = dict(headers) if headers else {}

        # set a default User-Agent header if it wasn't passed in
        if not any(k.lower() == 'user-agent' for k in headers):
            headers['User-Agent'] = self.default_user_agent
        url = "%s://%s%s" % (
            self.parsed_url.scheme,
            self.parsed_url.netloc,
            full_path)
        try:
            self.resp = self._request(method, url, headers=headers, data=data,
                                      **self.requests_args)
        except (RequestException, socket.error) as err:
            raise self._transport_error(
                '%s %s failed: %s' % (method, url, err), full_path)
        return self.resp

    def _transport_error(self, msg, full_path):
        return HttpTransportError(msg,
                                  http_scheme=self.parsed_url.scheme,
                                  http_host=self.parsed_url.hostname,
                                  http_port=self.parsed_url.port,
                                  http_path=full_path)

    def putrequest(self, full_path, data=None, headers=None):
        return self.request('PUT', full_path, data, headers)

    def getresponse(self):
        """Adapt requests response to httplib interface"""
        self.resp.status = self.resp.status_code

        def _decode_header(string):
            if string is None:
                return string
            return string.encode('iso-8859-1').decode('utf-8')

        def getheaders():
            return [(_decode_header(k), _decode_header(v))
                    for k, v in self.resp.headers.items()]

        def releasing_read(*args, **kwargs):
            try:
                chunk = self.resp.raw.read(*args, **kwargs)
            except (urllib_http_error, RequestException, socket.error) as err:
                self.resp.close()
                raise self._transport_error(
                    'Reading the response to %s %s failed: %s' % (
                        self.resp.request.method, self.resp.url, err),
                    urlparse(self.resp.url).path)
            if not chunk:
                # Release the connection back to urllib3's pool; this does
                # not close the socket.
                self.resp.close()
            return chunk

        self.resp.getheaders = getheaders
        self.resp.read = releasing_read

        return self.resp

    def close(self):
        if self.resp:
            self.resp.close()
        self.request_session.close()


def http_connection(*arg, **kwarg):
    """:returns: tuple of (parsed url, connection object)"""
    conn = HTTPConnection(*arg, **kwarg)
    return conn.parsed_url, conn


def get_auth(credentials, http_conn=None):
    """
    Exchange credentials for a storage URL and token (v1 auth).

    :param credentials: a complete :class:`objstor.credentials.Credentials`
    :param http_conn: a tuple of (parsed url, HTTPConnection object) for the
                      auth URL, (If None, it will create the conn object)
    :returns: a :class:`Session`
    :raises AuthenticationFailed: the auth service did not answer 200 with a
                                  storage URL
    """
    close_conn = False
    if http_conn:
        parsed, conn = http_conn
    else:
        parsed, conn = http_connection(credentials.auth_url)
        close_conn = True
    method = 'GET'
    headers = {'X-Auth-User': credentials.user,
               'X-Auth-Key': credentials.key}
    path = parsed.path
    if parsed.query:
        path += '?' + parsed.query
    conn.request(method, path, '', headers)
    resp = conn.getresponse()
    try:
        body = resp.read()
    finally:
        if close_conn:
            conn.close()
    http_log((credentials.auth_url, method,), {'headers': headers},
             resp, body)

    resp_headers = resp_header_dict(resp)
    url = resp_headers.get('x-storage-url')
    if resp.status != 200 or not url:
        raise AuthenticationFailed.from_response(
            resp, 'Authentication Failed!', body)
    token = resp_headers.get('x-storage-token',
                             resp_headers.get('x-auth-token'))
    logger.debug('Authenticated as %s against %s',
                 credentials.user, credentials.auth_url)
    return Session(url, token)


def _full_path(parsed, path):
    return '%s%s' % (parsed.path.rstrip('/'), quote(path or ''))


def _request(session, method, path, data=None, headers=None, http_conn=None):
    """
    Issue one authenticated request and read the whole response.

    :returns: a :class:`Response`
    """
    close_conn = False
    if http_conn:
        parsed, conn = http_conn
    else:
        parsed, conn = http_connection(session.storage_url)
        close_conn = True
    full_path = _full_path(parsed, path)
    req_headers = dict(headers) if headers else {}
    req_headers['X-Auth-Token'] = session.token
    if method == 'PUT':
        conn.putrequest(full_path, data=data, headers=req_headers)
    else:
        conn.request(method, full_path, data, req_headers)
    resp = conn.getresponse()
    try:
        body = resp.read()
    finally:
        if close_conn:
            conn.close()
    http_log(('%s%s' % (session.storage_url.rstrip('/'), quote(path or '')),
              method,), {'headers': req_headers}, resp, body)
    return Response(resp.status, resp.reason, resp_header_dict(resp), body)


def is_success(resp):
    return 200 <= resp.status < 300


def response_error(resp, msg, path, session=None,
                   exc_class=UnexpectedStatusCode):
    """
    Build an exception describing an unexpected :class:`Response`, keeping
    the raw status, headers and body.
    """
    kwargs = {}
    if session is not None:
        parsed = urlparse(session.storage_url)
        kwargs.update(http_scheme=parsed.scheme, http_host=parsed.hostname,
                      http_port=parsed.port)
        path = _full_path(parsed, path)
    return exc_class(msg, http_path=path, http_status=resp.status,
                     http_reason=resp.reason,
                     http_response_content=resp.body,
                     http_response_headers=resp.headers, **kwargs)


def get_info(session, path, http_conn=None):
    """
    Metadata-only (HEAD) request for an account, container or object.

    :param session: the authenticated :class:`Session`
    :param path: object path, e.g. ``/container/object``
    :param http_conn: a tuple of (parsed url, HTTPConnection object),
                      (If None, it will create the conn object)
    :returns: a :class:`Response` with an empty body
    """
    return _request(session, 'HEAD', path, '', http_conn=http_conn)


def check_exist(session, path, http_conn=None):
    """True iff a HEAD on ``path`` answers 200."""
    return get_info(session, path, http_conn=http_conn).status == 200


def head_account(session, http_conn=None):
    """HEAD the storage URL; the account usage comes back as headers."""
    return get_info(session, '', http_conn=http_conn)


def get_list(session, path='', http_conn=None):
    """
    GET a plain text listing.

    :param path: a container path, or empty for the account's containers
    :returns: a :class:`Response`; ``body`` holds one name per line
    """
    return _request(session, 'GET', path, '', http_conn=http_conn)


def get_object(session, path, destination, http_conn=None,
               chunk_size=DISK_BUFFER):
    """
    Download an object, streaming its body to a local file.

    :param path: object path, e.g. ``/container/object``
    :param destination: local file name to write
    :returns: a :class:`Response` whose body is the number of bytes written
    :raises UnexpectedStatusCode: HTTP GET request failed; no local file is
                                  written
    :raises HttpTransportError: the connection broke while the body was
                                being read; the partial file is removed
    """
    close_conn = False
    if http_conn:
        parsed, conn = http_conn
    else:
        parsed, conn = http_connection(session.storage_url)
        close_conn = True
    full_path = _full_path(parsed, path)
    method = 'GET'
    headers = {'X-Auth-Token': session.token}
    conn.request(method, full_path, '', headers)
    resp = conn.getresponse()
    log_args = ('%s%s' % (session.storage_url.rstrip('/'), quote(path)),
                method,)

    if resp.status < 200 or resp.status >= 300:
        body = resp.read()
        if close_conn:
            conn.close()
        http_log(log_args, {'headers': headers}, resp, body)
        raise UnexpectedStatusCode.from_response(
            resp, 'Object GET failed', body)

    written = 0
    try:
        with open(destination, 'wb') as fp:
            while True:
                chunk = resp.read(chunk_size)
                if not chunk:
                    break
                fp.write(chunk)
                written += len(chunk)
    except HttpTransportError:
        # never leave a truncated copy behind
        os.unlink(destination)
        raise
    finally:
        if close_conn:
            conn.close()
    http_log(log_args, {'headers': headers}, resp, None)
    return Response(resp.status, resp.reason, resp_header_dict(resp), written)


def put_object(session, path, local_file, http_conn=None):
    """
    Upload the full contents of a local file.

    :param path: object path, e.g. ``/container/object``
    :param local_file: name of the local file to send
    :returns: a :class:`Response`
    """
    with open(local_file, 'rb') as fp:
        headers = {'Content-Length': str(os.fstat(fp.fileno()).st_size)}
        return _request(session, 'PUT', path, fp, headers,
                        http_conn=http_conn)


def put_directory(session, path, http_conn=None):
    """Create a zero length directory placeholder object at ``path``."""
    headers = {'Content-Length': '0',
               'Content-Type': DIRECTORY_CONTENT_TYPE}
    return _request(session, 'PUT', path, '', headers, http_conn=http_conn)


def delete_object(session, path, http_conn=None):
    """DELETE ``path``; the caller inspects the returned status."""
    return _request(session, 'DELETE', path, '', http_conn=http_conn)


class Connection:

    """
    Convenience class holding the credentials, the :class:`Session` and a
    reusable HTTP connection.

    Authentication happens once, on the first request; nothing is retried.
    """

    def __init__(self, credentials, session=None):
        """
        :param credentials: a complete Credentials tuple
        :param session: an already authenticated :class:`Session`, if any;
                        connections for worker threads share one session
        """
        self.credentials = credentials
        self.session = session
        self.http_conn = None

    def close(self):
        if (self.http_conn and isinstance(self.http_conn, tuple) and
                len(self.http_conn) > 1):
            conn = self.http_conn[1]
            conn.close()
            self.http_conn = None

    def get_auth(self):
        if self.session is None:
            self.session = get_auth(self.credentials)
        return self.session

    def http_connection(self):
        return http_connection(self.get_auth().storage_url)

    def _call(self, func, *args, **kwargs):
        session = self.get_auth()
        if not self.http_conn:
            self.http_conn = self.http_connection()
        kwargs['http_conn'] = self.http_conn
        return func(session, *args, **kwargs)

    def head_account(self):
        """Wrapper for :func:`head_account`"""
        return self._call(head_account)

    def get_list(self, path=''):
        """Wrapper for :func:`get_list`"""
        return self._call(get_list, path)

    def get_info(self, path):
        """Wrapper for :func:`get_info`"""
        return self._call(get_info, path)

    def check_exist(self, path):
        """Wrapper for :func:`check_exist`"""
        return self._call(check_exist, path)

    def get_object(self, path, destination):
        """Wrapper for :func:`get_object`"""
        return self._call(get_object, path, destination)

    def put_object(self, path, local_file):
        """Wrapper for :func:`put_object`"""
        return self._call(put_object, path, local_file)

    def put_directory(self, path):
        """Wrapper for :func:`put_directory`"""
        return self._call(put_directory, path)

    def delete_object(self, path):
        """Wrapper for :func:`delete_object`"""
        return self._call(delete_object, path)
