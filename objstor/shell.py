#!/usr/bin/python -u
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

import argparse
import hashlib
import importlib.util
import logging
import signal

from os import environ, _exit as os_exit
from sys import argv as sys_argv, exit, stderr

from objstor import __version__ as client_version
from objstor.credentials import Credentials, credential_file_path, \
    resolve_credentials, save_credentials
from objstor.exceptions import ClientException, InvalidArguments, \
    MissingDependency, ObjstorError, EXIT_UNDEFINED
from objstor.multithreading import OutputManager

BASENAME = 'objstor'
commands = ('stats', 'save', 'list', 'get', 'put', 'delete')

#: Libraries the tool cannot run without, by import name.
REQUIRED_MODULES = ('requests', 'urllib3')


def immediate_exit(signum, frame):
    stderr.write(" Aborted\n")
    os_exit(EXIT_UNDEFINED)


usage = '''
%(prog)s [options] <action> [path] [path2...]

Options:
  -u <username>         Username. Defaults to env[APIUSER].
  -k <key>              Key. Defaults to env[APIKEY].
  -a <auth_url>         Auth URL. Defaults to env[APIURL].
  -o                    Overwrite existing file/object.
  --threads <threads>   Number of files to upload at once. Default is 1.
  --credentials-file <file>
                        Credential file to use instead of ~/.objstor
                        (or env[OBJSTOR_CREDENTIALS]).
  --info                Show the curl commands of failed requests.
  --debug               Show the curl commands and results of all requests,
                        including unredacted tokens.
  --version             Show the version and exit.
  -h, --help            Show this help message and exit.

Actions:
  stats   Get information about your Object Storage account.

  save    Save authentication details specified with -u -k and -a to
          ~/.objstor so they do not need to be specified in later calls of
          the program. The ~/.objstor file is a simple shell file that may
          be sourced.

  list    List the contents of the container specified. This will return
          the containers if none specified. If an object is specified, its
          details are retrieved.

  get     Download the object specified to the current directory, or to the
          local path given as second argument. If the file already exists,
          an error is returned. Specifying -o will overwrite the existing
          file.

  put     Upload files to object storage. The container is specified as the
          first argument and the list of files following that. If an object
          already exists, it will not be overwritten unless -o is used, and
          never when its content is identical. A directory creates a
          directory marker object; its contents are not uploaded.

  delete  Delete an object (or an empty container) in object storage. The
          path must include the container first. Only the first path given
          is deleted.

Other Notes:
  Authentication information specified with the -u -k and -a options takes
  precedence over the environment, which takes precedence over the
  configured ~/.objstor credentials.

Exit codes:
  0 success, 1 undefined error, 2 missing dependency, 3 incorrect
  arguments, 4 missing credentials, 5 failed authentication.

Examples:
  %(prog)s save -u myusername -k mykey -a 'https://swift.server.url/auth'
  %(prog)s list
  %(prog)s list mycontainer
  %(prog)s list mycontainer/myobject
  %(prog)s get mycontainer/myobject
  %(prog)s put mycontainer mylocalfile myotherlocalfile
  %(prog)s delete mycontainer/myobject
'''.strip('\n')


class ArgumentParser(argparse.ArgumentParser):

    def error(self, message):
        raise InvalidArguments('%s: error: %s' % (self.prog, message))


def check_dependencies():
    """
    :raises MissingDependency: a required library or the MD5 digest is not
                               available
    """
    for module in REQUIRED_MODULES:
        if importlib.util.find_spec(module) is None:
            raise MissingDependency(
                '%s library not found. It is required.' % module)
    try:
        hashlib.md5()
    except ValueError:
        # FIPS enabled interpreters refuse to hand out MD5
        raise MissingDependency(
            'md5 digest not available. It is required to compare local '
            'files with stored objects.')


def get_service(options, credentials):
    from objstor.service import ObjstorService
    return ObjstorService(credentials, options={
        'overwrite': options['overwrite'],
        'threads': options['threads'],
    })


def get_credentials(options):
    return resolve_credentials(options['user'], options['key'],
                               options['auth_url'],
                               options['credentials_file'])


def _header_name(name):
    return name.title()


def st_stats(options, args, output_manager):
    credentials = get_credentials(options)
    with get_service(options, credentials) as service:
        result = service.stats()
    for name, value in result['headers'].items():
        output_manager.print_msg('%s: %s', _header_name(name), value)


def st_save(options, args, output_manager):
    credentials = Credentials(options['user'], options['key'],
                              options['auth_url'])
    save_credentials(credentials, options['credentials_file'])


def st_list(options, args, output_manager):
    credentials = get_credentials(options)
    with get_service(options, credentials) as service:
        for r in service.list(args):
            if not r['success']:
                output_manager.error(str(r['error']))
                _print_raw_response(r['error'], output_manager)
                continue
            status = r['status']
            if status == 'object':
                output_manager.print_msg('File: %s', r['path'])
                for name, value in sorted(r['headers'].items()):
                    output_manager.print_msg('%s: %s', _header_name(name),
                                             value)
            elif status == 'container':
                listing = r['listing'].rstrip('\n')
                if listing:
                    output_manager.print_msg(listing)
            elif status == 'not-found':
                output_manager.print_msg('File %s does not exist!', r['path'])


def _print_raw_response(err, output_manager):
    """Show the full headers and body of an unexpected HTTP reply."""
    if not isinstance(err, ClientException) or not err.http_status:
        return
    headers = err.http_response_headers or {}
    for name, value in sorted(headers.items()):
        output_manager.warning('%s: %s', _header_name(name), value)
    body = err.http_response_content
    if isinstance(body, bytes):
        body = body.decode('utf8', 'replace')
    if body:
        output_manager.warning(body)


def st_get(options, args, output_manager):
    if not args or len(args) > 2:
        raise InvalidArguments(
            'ERROR: You must specify an object to download and, optionally, '
            'a local destination!')
    credentials = get_credentials(options)
    destination = args[1] if len(args) > 1 else None
    with get_service(options, credentials) as service:
        r = service.download(args[0], destination)
    output_manager.print_msg('%s: DOWNLOADED : Average Speed %s bytes/sec',
                             r['path'], r['speed'])


def st_put(options, args, output_manager):
    if len(args) < 2:
        raise InvalidArguments(
            'ERROR: You must specify a target container path and file or '
            'directory to upload!')
    credentials = get_credentials(options)
    with get_service(options, credentials) as service:
        for r in service.upload(args[0], args[1:]):
            status = r['status']
            if status == 'uploaded':
                output_manager.print_msg(
                    '%s: UPLOADED : Average Speed %s bytes/sec',
                    r['path'], r['speed'])
            elif status in ('skipped-identical', 'skipped-conflict'):
                output_manager.print_msg('%s: SKIPPING : %s',
                                         r['path'], r['reason'])
            elif status == 'directory-created':
                output_manager.print_msg('%s: DIRECTORY CREATED', r['path'])
            else:
                output_manager.error('%s: ERROR : %s', r['path'], r['error'])


def st_delete(options, args, output_manager):
    credentials = get_credentials(options)
    with get_service(options, credentials) as service:
        r = service.delete(args)
    output_manager.print_msg(r['object'])
    for path in r['ignored']:
        output_manager.warning(
            'Ignoring %s: only one path is deleted per invocation', path)


def parse_args(parser, args):
    options = parser.parse_intermixed_args(args)
    options = vars(options)
    if options.get('debug'):
        logging.basicConfig(level=logging.DEBUG)
        from objstor.client import logger_settings as client_logger_settings
        client_logger_settings['redact_sensitive_headers'] = False
    elif options.get('info'):
        logging.basicConfig(level=logging.INFO)
    if options['threads'] < 1:
        raise InvalidArguments('ERROR: --threads must be a positive integer')
    return options, options.pop('paths')


def add_default_args(parser):
    parser.add_argument('-u', '--user', default=environ.get('APIUSER'),
                        help='Username. Defaults to env[APIUSER].')
    parser.add_argument('-k', '--key', default=environ.get('APIKEY'),
                        help='Key. Defaults to env[APIKEY].')
    parser.add_argument('-a', '--auth-url', dest='auth_url',
                        default=environ.get('APIURL'),
                        help='Auth URL. Defaults to env[APIURL].')
    parser.add_argument('-o', '--overwrite', action='store_true',
                        default=False,
                        help='Overwrite existing file/object.')
    parser.add_argument('--threads', type=int, default=1,
                        help='Number of files to upload at once.')
    parser.add_argument('--credentials-file', dest='credentials_file',
                        default=None,
                        help='Credential file, defaults to %s.'
                        % credential_file_path())
    parser.add_argument('--debug', action='store_true', default=False,
                        help='Show the curl commands and results of all '
                        'requests.')
    parser.add_argument('--info', action='store_true', default=False,
                        help='Show the curl commands of failed requests.')
    parser.add_argument('action', nargs='?', default=None)
    parser.add_argument('paths', nargs='*')


def main(arguments=None):
    argv = sys_argv if arguments is None else arguments

    parser = ArgumentParser(prog=BASENAME, add_help=False, usage=usage)
    parser.add_argument('--version', action='version',
                        version='objstor %s' % client_version)
    parser.add_argument('-h', '--help', action='store_true')
    add_default_args(parser)

    if not argv[1:]:
        parser.print_usage()
        exit()

    signal.signal(signal.SIGINT, immediate_exit)

    exit_code = 0
    with OutputManager() as output:
        try:
            options, args = parse_args(parser, argv[1:])
            if options['help']:
                parser.print_usage()
                exit()
            action = options['action']
            if action not in commands:
                raise InvalidArguments('Invalid Action! Run %s --help for '
                                       'usage.' % BASENAME)
            check_dependencies()
            globals()['st_%s' % action](options, args, output)
        except ClientException as err:
            trans_id = err.transaction_id
            err.transaction_id = None  # clear it so we aren't overly noisy
            output.error(str(err))
            if trans_id:
                output.error("Failed Transaction ID: %s", trans_id)
            exit_code = err.exit_code
        except ObjstorError as err:
            output.error(str(err))
            exit_code = err.exit_code
        except OSError as err:
            output.error(str(err))
            exit_code = EXIT_UNDEFINED

    if exit_code:
        exit(exit_code)
    if output.get_error_count() > 0:
        exit(EXIT_UNDEFINED)


if __name__ == '__main__':
    main()
