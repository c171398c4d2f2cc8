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

import logging

from os.path import basename, exists, getsize, isdir, isfile
from time import time

from objstor.client import Connection, is_success, response_error
from objstor.exceptions import ClientException, InvalidArguments, \
    ObjstorError
from objstor.multithreading import ConnectionThreadPoolExecutor
from objstor.utils import (
    file_md5, normalize_container_path, normalize_path, object_name_for,
    parse_listing, parse_response_metadata, report_traceback)

logger = logging.getLogger("objstor.service")

# Outcome of a single list, upload or delete item
UPLOADED = 'uploaded'
SKIPPED_IDENTICAL = 'skipped-identical'
SKIPPED_CONFLICT = 'skipped-conflict'
DIRECTORY_CREATED = 'directory-created'
NOT_FOUND = 'not-found'
OBJECT = 'object'
CONTAINER = 'container'
DELETED = 'deleted'
ERROR = 'error'

_default_options = {
    'overwrite': False,
    'threads': 1,
}


def get_conn(credentials, session=None):
    """
    Return a connection for the given credentials, optionally reusing an
    already authenticated session.
    """
    return Connection(credentials, session=session)


def is_identical(conn, local_path, object_path, metadata=None):
    """
    Compare a local file with a stored object by content.

    The object's ETag (from a HEAD, so no body is transferred) is compared
    with the MD5 of the local file; Swift reports the MD5 of the content as
    the ETag of any object that is not a large object manifest.

    :param metadata: the object's already parsed HEAD response, if any
    :returns: True if both fingerprints are equal, False if they differ or
              either one cannot be obtained
    """
    meta = metadata
    if meta is None:
        meta = parse_response_metadata(conn.get_info(object_path))
    remote = meta.etag if meta.status == 200 else None
    if not remote:
        return False
    try:
        local = file_md5(local_path)
    except IOError:
        return False
    return remote == local.lower()


def _error_result(res, err):
    traceback, err_time = report_traceback()
    logger.exception(err)
    res.update({
        'success': False,
        'status': ERROR,
        'error': err,
        'traceback': traceback,
        'error_timestamp': err_time,
    })
    return res


class ObjstorService:
    """
    Performs the objstor actions on behalf of the command line tool.

    Methods return result dictionaries, or yield one per item, shaped like::

        {
            'action': 'upload_object',
            'path': 'local/file',
            'object': '/container/local/file',
            'success': True,
            'status': 'uploaded',
        }

    Errors for a single item are reported in its result (``success`` is
    False and ``error`` holds the exception) so that a batch carries on;
    errors that make the whole action meaningless are raised.
    """
    def __init__(self, credentials, options=None, connection=None):
        """
        :param credentials: complete :class:`objstor.credentials.Credentials`
        :param options: dict overriding ``overwrite`` and ``threads``
        :param connection: an existing :class:`objstor.client.Connection`
        """
        self._options = dict(_default_options, **(options or {}))
        self.credentials = credentials
        self.conn = connection or get_conn(credentials)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.conn.close()

    def authenticate(self):
        return self.conn.get_auth()

    # Stat related methods
    #
    def stats(self):
        """
        Account usage statistics.

        :returns: a result dict whose ``headers`` holds every ``X-Account-*``
                  header of the account, sorted by name
        :raises ClientException: the account HEAD did not succeed
        """
        resp = self.conn.head_account()
        if not is_success(resp):
            raise response_error(resp, 'Account HEAD failed', '',
                                 self.conn.session)
        return {
            'action': 'stats',
            'success': True,
            'headers': parse_response_metadata(resp).account_headers,
        }

    # List related methods
    #
    def list(self, paths=None):
        """
        List the account, containers or objects.

        With no paths a single result holds the account's container listing.
        Otherwise each path is classified with a HEAD first: 200 is an object
        (its headers are returned), 204 is a container (its listing is
        fetched), 404 does not exist, anything else is an error carrying the
        raw status.

        :param paths: container or object paths, as typed by the user
        :returns: an iterator of result dicts, in the order of ``paths``
        :raises AuthenticationFailed: before any result is produced
        """
        self.authenticate()
        if not paths:
            yield self._list_account()
            return
        for path in paths:
            yield self._list_path(normalize_path(path))

    def _list_account(self):
        res = {'action': 'list_account', 'path': ''}
        try:
            resp = self.conn.get_list()
            if not is_success(resp):
                raise response_error(resp, 'Account GET failed', '',
                                     self.conn.session)
            res.update({
                'success': True,
                'status': CONTAINER,
                'listing': parse_listing(resp.headers, resp.body),
            })
            return res
        except ClientException as err:
            return _error_result(res, err)

    def _list_path(self, path):
        res = {'action': 'list_path', 'path': path}
        try:
            info = self.conn.get_info(path)
            res['http_status'] = info.status
            if info.status == 200:
                res.update({
                    'success': True,
                    'status': OBJECT,
                    'headers': info.headers,
                })
            elif info.status == 204:
                listing = self.conn.get_list(path)
                if not is_success(listing):
                    raise response_error(listing, 'Container GET failed',
                                         path, self.conn.session)
                res.update({
                    'success': True,
                    'status': CONTAINER,
                    'listing': parse_listing(listing.headers, listing.body),
                })
            elif info.status == 404:
                res.update({
                    'success': True,
                    'status': NOT_FOUND,
                })
            else:
                raise response_error(
                    info, 'Unhandled response code: %s' % info.status,
                    path, self.conn.session)
            return res
        except ClientException as err:
            return _error_result(res, err)

    # Download related methods
    #
    def download(self, path, destination=None, overwrite=None):
        """
        Download a single object.

        :param path: object path, e.g. ``mycontainer/myobject``
        :param destination: local file name; defaults to the object's base
                            name in the current directory
        :param overwrite: replace an existing local file; defaults to the
                          service's ``overwrite`` option
        :returns: a result dict
        :raises InvalidArguments: no usable path or destination, or the
                                  destination exists and overwrite is off
        :raises ClientException: the download failed
        """
        if overwrite is None:
            overwrite = self._options['overwrite']
        if not path:
            raise InvalidArguments(
                'ERROR: You must specify an object to download!')
        obj_path = normalize_path(path)
        destination = destination or basename(obj_path.rstrip('/'))
        if not destination:
            raise InvalidArguments(
                'ERROR: Cannot determine a local file name for %s' % obj_path)
        if exists(destination) and not overwrite:
            raise InvalidArguments(
                "ERROR: Local file '%s' already exists, specify -o to "
                "overwrite it" % destination)

        start_time = time()
        resp = self.conn.get_object(obj_path, destination)
        elapsed = time() - start_time
        return {
            'action': 'download_object',
            'object': obj_path,
            'path': destination,
            'success': True,
            'bytes': resp.body,
            'speed': _speed(resp.body, elapsed),
        }

    # Upload related methods
    #
    def upload(self, container, files, overwrite=None):
        """
        Upload local files into a container.

        Each file is uploaded to ``<container>/<file>``.  An existing object
        is only replaced when ``overwrite`` is set and its content differs
        from the local file.  A directory gets a directory placeholder object
        and is not descended into.

        :param container: destination container (or pseudo-folder) path
        :param files: local file names
        :param overwrite: defaults to the service's ``overwrite`` option
        :returns: an iterator of result dicts, in the order of ``files``
        :raises InvalidArguments: no container or no files
        """
        if overwrite is None:
            overwrite = self._options['overwrite']
        if not container or not files:
            raise InvalidArguments(
                'ERROR: You must specify a target container path and file '
                'or directory to upload!')
        destination = normalize_container_path(container)
        self.authenticate()
        return self._upload_all(destination, list(files), overwrite)

    def _upload_all(self, destination, files, overwrite):
        threads = max(int(self._options['threads'] or 1), 1)
        if threads == 1 or len(files) == 1:
            for local_path in files:
                yield self._upload_object_job(
                    self.conn, local_path, destination, overwrite)
            return

        # every worker connection shares the one session
        session = self.authenticate()

        def create_connection():
            return get_conn(self.credentials, session=session)

        with ConnectionThreadPoolExecutor(create_connection,
                                          threads) as pool:
            futures = [
                pool.submit(self._upload_object_job, local_path,
                            destination, overwrite)
                for local_path in files
            ]
            for future in futures:
                yield future.result()

    def _upload_object_job(self, conn, local_path, destination, overwrite):
        obj_path = destination + object_name_for(local_path)
        res = {
            'action': 'upload_object',
            'path': local_path,
            'object': obj_path,
        }
        try:
            if isdir(local_path):
                resp = conn.put_directory(obj_path)
                if not is_success(resp):
                    raise response_error(resp, 'Directory PUT failed',
                                         obj_path, conn.session)
                res.update({'success': True, 'status': DIRECTORY_CREATED})
                return res
            if not isfile(local_path):
                raise ObjstorError("Local file '%s' not found" % local_path)

            # one HEAD answers both "does it exist" and "is it the same"
            meta = parse_response_metadata(conn.get_info(obj_path))
            if meta.status == 200:
                if is_identical(conn, local_path, obj_path, meta):
                    if overwrite:
                        reason = 'md5 sums match, no re-upload necessary'
                    else:
                        reason = 'refusing to overwrite. Files are identical.'
                    res.update({
                        'success': True,
                        'status': SKIPPED_IDENTICAL,
                        'reason': reason,
                    })
                    return res
                if not overwrite:
                    res.update({
                        'success': True,
                        'status': SKIPPED_CONFLICT,
                        'reason': 'refusing to overwrite without overwrite '
                                  'flag. Files differ.',
                    })
                    return res

            size = getsize(local_path)
            start_time = time()
            resp = conn.put_object(obj_path, local_path)
            elapsed = time() - start_time
            if not is_success(resp):
                raise response_error(resp, 'Object PUT failed', obj_path,
                                     conn.session)
            res.update({
                'success': True,
                'status': UPLOADED,
                'bytes': size,
                'speed': _speed(size, elapsed),
            })
            return res
        except (ObjstorError, IOError) as err:
            return _error_result(res, err)

    # Delete related methods
    #
    def delete(self, paths):
        """
        Delete an object (or an empty container).

        Only the first path is deleted; any further paths are ignored and
        reported back in ``ignored``.

        :raises InvalidArguments: no path given
        :raises ClientException: the DELETE did not succeed
        """
        if not paths:
            raise InvalidArguments(
                'ERROR: You must specify an object path to delete!')
        path = normalize_path(paths[0])
        ignored = list(paths[1:])
        if ignored:
            logger.warning('Only %s is deleted, ignoring: %s',
                           path, ' '.join(ignored))
        resp = self.conn.delete_object(path)
        if not is_success(resp):
            raise response_error(resp, 'Object DELETE failed', path,
                                 self.conn.session)
        return {
            'action': 'delete_object',
            'object': path,
            'success': True,
            'status': DELETED,
            'ignored': ignored,
        }


def _speed(num_bytes, elapsed):
    """Average transfer speed in bytes/sec."""
    if elapsed <= 0:
        return num_bytes
    return int(num_bytes / elapsed)
