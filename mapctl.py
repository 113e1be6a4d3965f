#!/usr/bin/env python
import getopt
import logging
import re
import sys

from errors import InvalidArgument, MapctlError
from gateway import DEFAULT_SERVICE, discoverGateway
from mappings import PROTOCOL_FANOUT, addMapping, getCurrentMappings, removeAllMappings, removeMapping

# Define version of the script
__version__ = '0.1.0'

logger = logging.getLogger('mapctl')

# DEFAULT VARIABLE INITIALIZATION
DEFAULT_TIMEOUT = 60        # Seconds to wait for UPnP devices to answer
DEFAULT_LEASE = 0           # Mapping duration in seconds, zero means indefinite
DEFAULT_DESCRIPTION = ''    # Name for the mapping
MAX_LEASE = 4294967295      # Lease durations are unsigned 32-bit values on the wire

VERBS = ('VIEW', 'ADD', 'REMOVE')

# Terminal states of a command and their exit status
COMPLETED = 'Completed'
COMPLETED_WITH_ERRORS = 'CompletedWithErrors'
FAILED = 'Failed'
EXIT_CODES = {COMPLETED: 0, FAILED: 1, COMPLETED_WITH_ERRORS: 2}

SHORT_OPTIONS = 't:g:e:l:i:h:p:d:n:f:a'
LONG_OPTIONS = ['timeout=', 'gateway=', 'service=', 'add-action=', 'remove-action=', 'get-action=', 'ip-action=',
                'external-port=', 'internal-port=', 'internal-host=', 'host=', 'protocol=', 'lease-duration=',
                'description=', 'filter=', 'print-ip', 'clear-all', 'help', 'debug']


# Display help
def printUsage():
    print('Usage: python mapctl.py [SWITCHES] VERB [SWITCHES]')
    print('SWITCHES:')
    print('    -t --timeout <seconds>')
    print('        Sets how long to wait for the gateway to answer (defaults to 60).')
    print('    -g --gateway <address>')
    print('        Selects the gateway to use when more than one is present on the network.')
    print('    --service <service name>')
    print('        Sets the name of the service used to interact with port mappings.')
    print('    --add-action / --remove-action / --get-action / --ip-action <action name>')
    print('        Set the names of the actions used to add, remove and list mappings and to query the external IP.')
    print('    -e --external-port <port>')
    print('        Sets the external port of the mapping.')
    print('    -l --internal-port <port>')
    print('        Sets the internal port to forward traffic to.')
    print('    -i --internal-host <address>')
    print('        Sets the internal IPv4 address to forward traffic to.')
    print('    -h --host <address>')
    print('        Sets the remote host allowed to use the mapping (defaults to all hosts).')
    print('    -p --protocol (TCP|UDP|BOTH)')
    print('        Sets the protocol of the mapping.')
    print('    -d --lease-duration <seconds>')
    print('        Sets the duration of the mapping in seconds (defaults to 0, indefinite).')
    print('    -n --description <text>')
    print('        Sets the description of the mapping (defaults to empty).')
    print('    -f --filter <address>')
    print('        Only lists mappings towards that internal address.')
    print('    --print-ip')
    print('        Also prints the gateway and external IP addresses when listing.')
    print('    -a --clear-all')
    print('        Removes every mapping on the gateway, ignoring the external port.')
    print('    --help')
    print('        Displays this screen.')
    print('    --debug')
    print('        Enables debug mode (verbose output).\n')

    print('VERBS')
    print('    view')
    print('        Lists the port mappings of the gateway.')
    print('    add')
    print('        Adds a port mapping. Requires external port, internal port, internal host and protocol.')
    print('    remove')
    print('        Removes a port mapping. Requires protocol and either external port or --clear-all.')


# Checks wether the provided IP string is a valid IPv4 address
def isValidIP(ip):
    if ip is None:
        return False

    if re.search('^[0-9]{1,3}([.][0-9]{1,3}){3}$', ip) is None:
        return False

    # Each segment must be below 256 and not start with zero unless it is a literal zero
    for segment in ip.split('.'):
        if int(segment) > 255 or (segment.startswith('0') and len(segment) > 1):
            return False

    return True


# Only plain digits are accepted, no sign, underscores or surrounding spaces
def parseInteger(value, message, minimum=0, maximum=None):
    if re.search('^[0-9]+$', str(value)) is None:
        raise InvalidArgument(message)
    number = int(value)
    if number < minimum or (maximum is not None and number > maximum):
        raise InvalidArgument(message)
    return number


def parsePort(value, name):
    if value is None:
        raise InvalidArgument('Please specify an {} port.'.format(name))
    return parseInteger(value, 'Invalid {} port. Please choose an integer from 0 to 65535.'.format(name),
                        maximum=65535)


def parseAddress(value, name):
    if not isValidIP(value):
        raise InvalidArgument('Invalid {} address. Please specify an IPv4 address.'.format(name))
    return value


def parseProtocol(value):
    if value is None:
        raise InvalidArgument('Please specify a protocol. TCP, UDP, and BOTH are valid.')
    if value.upper() not in PROTOCOL_FANOUT:
        raise InvalidArgument('Invalid protocol {}. TCP, UDP, and BOTH are valid.'.format(value))
    return value.upper()


# Reads the switches and the verb from the command line
def parseCommandLine(argv):
    try:
        # Switches may come before or after the verb
        switches, commands = getopt.gnu_getopt(argv, SHORT_OPTIONS, LONG_OPTIONS)
    except getopt.GetoptError as error:
        raise InvalidArgument(str(error))

    options = {'actions': {}, 'printIP': False, 'clearAll': False, 'help': False, 'debug': False}
    for opt, arg in switches:
        if opt in ('-t', '--timeout'):
            options['timeout'] = arg
        elif opt in ('-g', '--gateway'):
            options['gateway'] = arg
        elif opt == '--service':
            options['service'] = arg
        elif opt in ('--add-action', '--remove-action', '--get-action', '--ip-action'):
            options['actions'][opt[2:].split('-')[0]] = arg
        elif opt in ('-e', '--external-port'):
            options['externalPort'] = arg
        elif opt in ('-l', '--internal-port'):
            options['internalPort'] = arg
        elif opt in ('-i', '--internal-host'):
            options['internalHost'] = arg
        elif opt in ('-h', '--host'):
            options['host'] = arg
        elif opt in ('-p', '--protocol'):
            options['protocol'] = arg
        elif opt in ('-d', '--lease-duration'):
            options['leaseDuration'] = arg
        elif opt in ('-n', '--description'):
            options['description'] = arg
        elif opt in ('-f', '--filter'):
            options['filter'] = arg
        elif opt == '--print-ip':
            options['printIP'] = True
        elif opt in ('-a', '--clear-all'):
            options['clearAll'] = True
        elif opt == '--help':
            options['help'] = True
        elif opt == '--debug':
            options['debug'] = True

    verb = commands[0].upper() if commands else None
    if len(commands) > 1:
        raise InvalidArgument('Unexpected arguments: {}'.format(' '.join(commands[1:])))

    return verb, options


# Turns the raw switches into typed settings for the verb
# Everything is checked here, before the network is touched
def validateOptions(verb, options):
    if verb is None:
        raise InvalidArgument('Missing verb (either view, add or remove)')
    if verb not in VERBS:
        raise InvalidArgument('Unknown verb {}'.format(verb))

    settings = {
        'timeout': parseInteger(options.get('timeout', DEFAULT_TIMEOUT),
                                'Invalid timeout. Please choose an integer > 0.', minimum=1),
        'gateway': None,
        'service': options.get('service', DEFAULT_SERVICE),
        'actions': options.get('actions', {}),
    }
    if options.get('gateway') is not None:
        settings['gateway'] = parseAddress(options['gateway'], 'gateway')

    host = options.get('host', '')
    if host != '':
        parseAddress(host, 'remote host')

    if verb == 'VIEW':
        settings['printIP'] = options.get('printIP', False)
        settings['filter'] = None
        if options.get('filter') is not None:
            settings['filter'] = parseAddress(options['filter'], 'filter')

    elif verb == 'ADD':
        settings['externalPort'] = parsePort(options.get('externalPort'), 'external')
        settings['internalPort'] = parsePort(options.get('internalPort'), 'internal')
        if options.get('internalHost') is None:
            raise InvalidArgument('Please specify an internal host address.')
        settings['internalHost'] = parseAddress(options['internalHost'], 'internal host')
        settings['protocol'] = parseProtocol(options.get('protocol'))
        settings['leaseDuration'] = parseInteger(options.get('leaseDuration', DEFAULT_LEASE),
                                                 'Invalid duration. Choose an integer from 0 to {}'.format(MAX_LEASE),
                                                 maximum=MAX_LEASE)
        settings['description'] = options.get('description', DEFAULT_DESCRIPTION)
        settings['host'] = host

    elif verb == 'REMOVE':
        settings['protocol'] = parseProtocol(options.get('protocol'))
        settings['clearAll'] = options.get('clearAll', False)
        settings['host'] = host
        # The external port does not matter when clearing the whole table
        if not settings['clearAll']:
            settings['externalPort'] = parsePort(options.get('externalPort'), 'external')

    return settings


# Prints the mapping table, optionally restricted to one internal client
def printMappings(entries, clientFilter=None, report=print):
    report('{:<15} || {:<15} || {:<25} // Description'.format('Remote Host', 'External Port', 'Internal Host'))
    for entry in entries:
        if clientFilter is not None and entry.internalClient != clientFilter:
            continue
        external = '{}/{}'.format(entry.externalPort, entry.protocol)
        internal = '{}/{}@{}'.format(entry.internalPort, entry.protocol, entry.internalClient)
        report('{:<15} -> {:<15} -> {:<25} // {}'.format(entry.remoteHost or '*', external, internal,
                                                          entry.description))


# Acquires the gateway and carries out the verb
# Returns the terminal state on success, fatal errors propagate to the caller
def runCommand(verb, settings, discover=None, report=print):
    if discover is None:
        discover = discoverGateway
    gateway = discover(settings['timeout'], address=settings['gateway'], serviceName=settings['service'],
                       actions=settings['actions'])
    logger.debug('Gateway acquired: %s (%s)', gateway.host, gateway.name)

    if verb == 'VIEW':
        if settings['printIP']:
            report('Gateway IP: {} | External IP: {}'.format(gateway.host, gateway.getExternalIP()))
        entries = getCurrentMappings(gateway)
        if len(entries) == 0:
            report('No mapping found on the IGD.')
        else:
            printMappings(entries, settings['filter'], report=report)
        return COMPLETED

    if verb == 'ADD':
        addMapping(gateway, settings['protocol'], settings['externalPort'], settings['internalHost'],
                   settings['internalPort'], settings['leaseDuration'], settings['description'],
                   remoteHost=settings['host'], report=report)
        return COMPLETED

    if settings['clearAll']:
        result = removeAllMappings(gateway, report=report)
        if len(result.entries) > 0:
            report(result.summary())
        return COMPLETED if result.succeeded else COMPLETED_WITH_ERRORS

    removeMapping(gateway, settings['protocol'], settings['externalPort'], remoteHost=settings['host'],
                  report=report)
    return COMPLETED


# MAIN FUNCTION
# The only place where errors become messages and exit codes
def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]

    print('mapctl version', __version__)

    try:
        verb, options = parseCommandLine(argv)
    except InvalidArgument as error:
        print('\nERROR:', error)
        printUsage()
        return EXIT_CODES[FAILED]

    if options['help']:
        printUsage()
        return EXIT_CODES[COMPLETED]

    logging.basicConfig(level=logging.DEBUG if options['debug'] else logging.WARNING,
                        format='%(levelname)s: %(message)s')

    # Debug print of all parameters
    for name in sorted(options):
        logger.debug('Option %s: %s', name, options[name])

    try:
        settings = validateOptions(verb, options)
        outcome = runCommand(verb, settings)
    except MapctlError as error:
        print('\nERROR:', error)
        return EXIT_CODES[FAILED]

    if outcome == COMPLETED_WITH_ERRORS:
        print('\nERROR: Some mappings could not be removed.')

    return EXIT_CODES[outcome]


if __name__ == '__main__':
    sys.exit(main())
