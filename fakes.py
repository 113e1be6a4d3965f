# In-memory stand-in for gateway.Gateway used by the test suite

from errors import EndOfTable, EnumerationFailure, MutationFailure
from mappings import MappingEntry


class FakeGateway:
    def __init__(self, entries=None, host='192.168.1.1', externalIP='198.51.100.7'):
        self.entries = list(entries or [])
        self.host = host
        self.name = 'Fake IGD'
        self.externalIP = externalIP
        # Every device call in order, as (action, arguments) tuples
        self.calls = []
        # Errors to raise instead of answering, keyed like the calls
        self.entryErrors = {}
        self.addErrors = {}
        self.removeErrors = {}

    def getExternalIP(self):
        self.calls.append(('ip', ()))
        return self.externalIP

    def getEntry(self, index):
        self.calls.append(('get', (index,)))
        if index in self.entryErrors:
            raise self.entryErrors[index]
        if index >= len(self.entries):
            raise EndOfTable('No mapping at index {}'.format(index), 713)
        return self.entries[index]

    def addMapping(self, protocol, externalPort, internalClient, internalPort, leaseDuration, description,
                   remoteHost=''):
        self.calls.append(('add', (protocol, externalPort)))
        if (protocol, externalPort) in self.addErrors:
            raise self.addErrors[(protocol, externalPort)]
        self.entries.append(MappingEntry(remoteHost, externalPort, protocol, internalClient, internalPort,
                                         leaseDuration, description))

    def removeMapping(self, protocol, externalPort, remoteHost=''):
        self.calls.append(('remove', (protocol, externalPort)))
        if (protocol, externalPort) in self.removeErrors:
            raise self.removeErrors[(protocol, externalPort)]
        for entry in self.entries:
            if entry.protocol == protocol and entry.externalPort == externalPort and entry.remoteHost == remoteHost:
                self.entries.remove(entry)
                return
        raise MutationFailure('Error removing port mapping: NoSuchEntryInArray', 714)

    def mutations(self):
        return [call for call in self.calls if call[0] in ('add', 'remove')]


def makeEntry(externalPort, protocol='TCP', internalClient='192.168.1.10', internalPort=None, description='test',
              remoteHost='', leaseDuration=0):
    return MappingEntry(remoteHost, externalPort, protocol, internalClient,
                        externalPort if internalPort is None else internalPort, leaseDuration, description)


def permissionError():
    return EnumerationFailure('Error getting port mapping: Action not authorized', 606)
