import logging

import upnpy

from errors import (DiscoveryFailure, EndOfTable, EnumerationFailure, ExternalIpQueryFailure,
                    MutationFailure, PermissionDenied)
from mappings import MappingEntry

logger = logging.getLogger(__name__)

# Default UPnP service and action names used to interact with port mappings
DEFAULT_SERVICE = 'WANIPConn1'
DEFAULT_ACTIONS = {
    'add': 'AddPortMapping',
    'remove': 'DeletePortMapping',
    'get': 'GetGenericPortMappingEntry',
    'ip': 'GetExternalIPAddress',
}

# UPnP error codes with a special meaning for this tool
ACTION_NOT_AUTHORIZED = 606
SPECIFIED_ARRAY_INDEX_INVALID = 713
NO_SUCH_ENTRY_IN_ARRAY = 714

# Some devices answer 714 instead of 713 past the last row
END_OF_TABLE_CODES = (SPECIFIED_ARRAY_INDEX_INVALID, NO_SUCH_ENTRY_IN_ARRAY)

# Hints for the error codes devices commonly return
SOAP_ERROR_HINTS = {
    402: 'invalid arguments',
    501: 'the device failed while executing the action',
    606: 'action not authorized, UPnP control may be restricted on the device',
    713: 'index out of bounds',
    714: 'no such mapping',
    715: 'wildcard not permitted as remote host',
    716: 'wildcard not permitted as external port',
    718: 'conflicting mapping, the external port is already in use',
    724: 'the device requires internal and external ports to match',
    725: 'the device only supports permanent leases',
    726: 'the device only supports a wildcard remote host',
}


# Gets the UPnP type of the device using the type string
def getType(device):
    return device.type_.split(':')[3]


# Checks wether the device is an IGD using the type string
def isIGD(device):
    return getType(device) == 'InternetGatewayDevice'


# Gets the device by IP
# Returns at the first match even though quirky devices may announce themselves more than once
def getDeviceByIP(IP, devices):
    for device in devices:
        if device.host == IP:
            return device
    return None


# Extracts the numeric UPnP error code from a SOAP fault, if there is one
def soapErrorCode(exception):
    try:
        return int(exception.error)
    except (AttributeError, TypeError, ValueError):
        return None


# Builds a readable message out of a SOAP fault
def describeSOAPError(prefix, exception):
    description = getattr(exception, 'description', None) or str(exception)
    hint = SOAP_ERROR_HINTS.get(soapErrorCode(exception))
    if hint is None:
        return '{}: {}'.format(prefix, description)
    return '{}: {} ({})'.format(prefix, description, hint)


# First argument of a library exception, which upnpy uses for the message
def exceptionMessage(exception):
    if exception.args:
        return str(exception.args[0])
    return str(exception) or type(exception).__name__


# Parses an integer field of a GetGenericPortMappingEntry response
def parseNumber(response, field, index):
    try:
        return int(response[field])
    except (KeyError, TypeError, ValueError):
        raise EnumerationFailure('Malformed mapping at index {}: bad or missing {}'.format(index, field))


# Handle on one discovered IGD, valid for the duration of a single command
class Gateway:
    def __init__(self, device, service, actions=None):
        self.device = device
        self.service = service
        self.actions = dict(DEFAULT_ACTIONS)
        if actions:
            self.actions.update(actions)

    @property
    def host(self):
        return self.device.host

    @property
    def name(self):
        return getattr(self.device, 'friendly_name', self.device.host)

    # Invokes a UPnP action, turning every library or transport error into the given failure kind
    def callAction(self, action, failure, prefix, **arguments):
        actionName = self.actions[action]
        try:
            method = getattr(self.service, actionName)
        except upnpy.exceptions.ActionNotFoundError:
            raise failure('Action {} not found in service {} on device {}'.format(
                actionName, self.service.id.split(':')[-1], self.host))

        logger.debug('Calling %s on %s with %s', actionName, self.host, arguments)
        try:
            return method(**arguments)
        except upnpy.exceptions.SOAPError as exception:
            raise failure(describeSOAPError(prefix, exception), soapErrorCode(exception))
        except upnpy.exceptions.ArgumentError as exception:
            raise failure('{}: {}'.format(prefix, exceptionMessage(exception)))
        except OSError as exception:
            raise failure('{}: {}'.format(prefix, exception))
        # Malformed fault bodies surface as parser or lookup errors from upnpy
        except Exception as exception:
            raise failure('{}: unexpected response from the device ({}: {})'.format(
                prefix, type(exception).__name__, exceptionMessage(exception)))

    def getExternalIP(self):
        response = self.callAction('ip', ExternalIpQueryFailure, 'Failed to get external IP address')
        address = response.get('NewExternalIPAddress') if response else None
        if not address:
            raise ExternalIpQueryFailure('Failed to get external IP address: empty response')
        return address

    # Reads one row of the mapping table
    # Raises EndOfTable once the index goes past the last row
    def getEntry(self, index):
        try:
            response = self.callAction('get', EnumerationFailure, 'Error getting port mapping',
                                       NewPortMappingIndex=index)
        except EnumerationFailure as error:
            if error.code in END_OF_TABLE_CODES:
                raise EndOfTable('No mapping at index {}'.format(index), error.code)
            if error.code == ACTION_NOT_AUTHORIZED:
                raise PermissionDenied(error.message, error.code)
            raise

        if not response:
            raise EnumerationFailure('Error getting port mapping: empty response for index {}'.format(index))

        return MappingEntry(
            remoteHost=response.get('NewRemoteHost') or '',
            externalPort=parseNumber(response, 'NewExternalPort', index),
            protocol=(response.get('NewProtocol') or '').upper(),
            internalClient=response.get('NewInternalClient') or '',
            internalPort=parseNumber(response, 'NewInternalPort', index),
            leaseDuration=parseNumber(response, 'NewLeaseDuration', index),
            description=response.get('NewPortMappingDescription') or '',
        )

    def addMapping(self, protocol, externalPort, internalClient, internalPort, leaseDuration, description,
                   remoteHost=''):
        self.callAction('add', MutationFailure, 'Error adding port mapping',
                        NewRemoteHost=remoteHost,
                        NewExternalPort=externalPort,
                        NewProtocol=protocol,
                        NewInternalPort=internalPort,
                        NewInternalClient=internalClient,
                        NewEnabled=1,
                        NewPortMappingDescription=description,
                        NewLeaseDuration=leaseDuration)

    def removeMapping(self, protocol, externalPort, remoteHost=''):
        self.callAction('remove', MutationFailure, 'Error removing port mapping',
                        NewRemoteHost=remoteHost,
                        NewExternalPort=externalPort,
                        NewProtocol=protocol)


# Scans the network and returns a Gateway for the IGD to operate on
# timeout is handed to the SSDP search as its discovery delay
def discoverGateway(timeout, address=None, serviceName=DEFAULT_SERVICE, actions=None):
    logger.debug('Searching for UPnP devices for %s seconds', timeout)
    try:
        devices = upnpy.UPnP().discover(delay=timeout)
    except OSError as exception:
        raise DiscoveryFailure('Failed to find UPnP-enabled gateway: {}'.format(exception))

    igds = [device for device in devices if isIGD(device)]
    logger.debug('Found %d UPnP devices, %d of them IGDs', len(devices), len(igds))

    if len(igds) == 0:
        raise DiscoveryFailure('No IGD (Internet Gateway Device) found on this network. '
                               'Your device might be offline or have UPnP disabled, '
                               'or a firewall may be blocking UPnP.')

    if address is not None:
        gateway = getDeviceByIP(address, igds)
        if gateway is None:
            raise DiscoveryFailure('No IGD found at address {}'.format(address))
    else:
        gateway = igds[0]
        if len(igds) > 1:
            others = ', '.join(igd.host for igd in igds[1:])
            logger.warning('Multiple IGDs on this network, using %s (others: %s). '
                           'Use --gateway to choose another one.', gateway.host, others)

    try:
        service = gateway[serviceName]
    except upnpy.exceptions.ServiceNotFoundError:
        raise DiscoveryFailure('Service {} not found on device {}. If you did not set a custom service name, '
                               'your device may use a non-standard one.'.format(serviceName, gateway.host))

    logger.debug('Using service %s on %s', serviceName, gateway.host)
    return Gateway(gateway, service, actions)
