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

import sys
import threading

from concurrent.futures import ThreadPoolExecutor
from queue import Empty, LifoQueue


class OutputManager:
    """
    One object to manage and provide helper functions for output.

    This object is a context manager and returns itself into the context.
    Messages for each of the two streams are written by a dedicated single
    thread, so lines never interleave and keep the order they were submitted
    in; the threads are drained when the context exits.

    :meth:`print_msg` prints to ``print_stream`` (``sys.stdout`` by default)
    and :meth:`error` prints to ``error_stream`` (``sys.stderr``).  Both
    format the message with any supplied ``*args`` (a la printf).

    Every :meth:`error` call is counted; the objstor tool exits non-zero if
    any per-item errors were printed.
    """
    def __init__(self, print_stream=None, error_stream=None):
        self.print_stream = print_stream or sys.stdout
        self.print_pool = ThreadPoolExecutor(max_workers=1)

        self.error_stream = error_stream or sys.stderr
        self.error_print_pool = ThreadPoolExecutor(max_workers=1)
        self.error_count = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.error_print_pool.__exit__(exc_type, exc_value, traceback)
        self.print_pool.__exit__(exc_type, exc_value, traceback)

    def print_msg(self, msg, *fmt_args):
        if fmt_args:
            msg = msg % fmt_args
        self.print_pool.submit(self._print, msg)

    def error(self, msg, *fmt_args):
        if fmt_args:
            msg = msg % fmt_args
        self.error_print_pool.submit(self._print_error, msg)

    def warning(self, msg, *fmt_args):
        # print to error stream but do not increment error count
        if fmt_args:
            msg = msg % fmt_args
        self.error_print_pool.submit(self._print_error, msg, count=0)

    def get_error_count(self):
        return self.error_count

    def _print(self, item, stream=None):
        if stream is None:
            stream = self.print_stream
        print(item, file=stream)
        stream.flush()

    def _print_error(self, item, count=1):
        self.error_count += count
        return self._print(item, stream=self.error_stream)


class ConnectionThreadPoolExecutor(ThreadPoolExecutor):
    """
    A thread pool whose jobs each borrow an objstor connection.

    The submitted function receives the connection as its first argument.
    Idle connections wait on a stack and the most recently returned one is
    reused first, so a new connection is only made when every existing one
    is busy; the upload workers get connections sharing the service's
    authenticated session this way.  All connections made are closed when
    the pool shuts down.
    """
    def __init__(self, create_connection, max_workers):
        self._create_connection = create_connection
        self._idle = LifoQueue()
        self._created = []
        self._created_lock = threading.Lock()
        super(ConnectionThreadPoolExecutor, self).__init__(max_workers)

    def _borrow(self):
        try:
            return self._idle.get_nowait()
        except Empty:
            pass
        conn = self._create_connection()
        with self._created_lock:
            self._created.append(conn)
        return conn

    def submit(self, fn, *args, **kwargs):
        def with_connection():
            conn = self._borrow()
            try:
                return fn(conn, *args, **kwargs)
            finally:
                self._idle.put(conn)

        return super(ConnectionThreadPoolExecutor, self).submit(
            with_connection)

    def shutdown(self, wait=True, **kwargs):
        super(ConnectionThreadPoolExecutor, self).shutdown(wait, **kwargs)
        with self._created_lock:
            created, self._created = self._created, []
        for conn in created:
            conn.close()
