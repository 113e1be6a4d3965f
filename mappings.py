import logging
from collections import namedtuple

from errors import EndOfTable, InvalidArgument, MutationFailure

logger = logging.getLogger(__name__)

# Snapshot of one row of the mapping table at read time
# remoteHost is empty for the wildcard, a leaseDuration of zero means indefinite
MappingEntry = namedtuple('MappingEntry', [
    'remoteHost',
    'externalPort',
    'protocol',
    'internalClient',
    'internalPort',
    'leaseDuration',
    'description',
])

# Concrete protocols each selector expands to, in call order
PROTOCOL_FANOUT = {
    'TCP': ('TCP',),
    'UDP': ('UDP',),
    'BOTH': ('UDP', 'TCP'),
}


# Resolves a protocol selector into the protocols to call the device with
def expandProtocol(selector):
    try:
        return PROTOCOL_FANOUT[selector]
    except KeyError:
        raise InvalidArgument('Invalid protocol {}. TCP, UDP, and BOTH are valid.'.format(selector))


# Retrieves the mappings from the gateway one at a time using an incremental index
# Anything but the end-of-table signal propagates and no partial list is returned
def getCurrentMappings(gateway):
    entries = []
    index = 0

    while True:
        try:
            entry = gateway.getEntry(index)
        except EndOfTable:
            logger.debug('End of mapping table at index %d', index)
            return entries

        logger.debug('Mapping %d: %s', index, entry)
        entries.append(entry)
        index += 1


def addMapping(gateway, selector, externalPort, internalClient, internalPort, leaseDuration=0, description='',
               remoteHost='', report=print):
    # A failure on the first protocol of BOTH leaves the second one unattempted
    for protocol in expandProtocol(selector):
        gateway.addMapping(protocol, externalPort, internalClient, internalPort, leaseDuration, description,
                           remoteHost=remoteHost)
        report('Added mapping: {} ext:{} -> {}:{}'.format(protocol, externalPort, internalClient, internalPort))


def removeMapping(gateway, selector, externalPort, remoteHost='', report=print):
    for protocol in expandProtocol(selector):
        gateway.removeMapping(protocol, externalPort, remoteHost=remoteHost)
        report('Removed {}/{}'.format(externalPort, protocol))


# Outcome of clearing the whole table
class RemovalReport:
    def __init__(self, entries):
        self.entries = entries
        self.removed = []
        self.failures = []

    @property
    def succeeded(self):
        return len(self.failures) == 0

    def summary(self):
        lines = ['Removed {} of {} mappings'.format(len(self.removed), len(self.entries))]
        for entry, error in self.failures:
            lines.append('    {}/{} -> {}:{}: {}'.format(entry.externalPort, entry.protocol, entry.internalClient,
                                                        entry.internalPort, error))
        return '\n'.join(lines)


# Deletes every mapping currently on the gateway
# Individual failures are collected and do not stop the remaining removals
def removeAllMappings(gateway, report=print):
    entries = getCurrentMappings(gateway)
    result = RemovalReport(entries)

    if len(entries) == 0:
        report('No mappings to delete.')
        return result

    for entry in entries:
        try:
            gateway.removeMapping(entry.protocol, entry.externalPort, remoteHost=entry.remoteHost)
        except MutationFailure as error:
            logger.warning('Could not remove %s/%s: %s', entry.externalPort, entry.protocol, error)
            result.failures.append((entry, error))
            continue

        report('Removed {}/{}'.format(entry.externalPort, entry.protocol))
        result.removed.append(entry)

    return result
