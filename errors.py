# Error kinds raised by the gateway and mapping layers
# Only mapctl.main() turns them into a message and an exit code


# Base class for every error the tool reports to the user
class MapctlError(Exception):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        # UPnP error code when the device produced the error
        self.code = code

    def __str__(self):
        if self.code is None:
            return self.message
        return '{} (UPnP error {})'.format(self.message, self.code)


# Malformed port, address, duration or protocol - raised before any device contact
class InvalidArgument(MapctlError):
    pass


# No usable gateway found within the timeout
class DiscoveryFailure(MapctlError):
    pass


class ExternalIpQueryFailure(MapctlError):
    pass


# Any table read error other than the end-of-table sentinel
class EnumerationFailure(MapctlError):
    pass


# The device refused to disclose its table (UPnP error 606)
class PermissionDenied(EnumerationFailure):
    pass


# An add or remove rejected by the device
class MutationFailure(MapctlError):
    pass


# Index past the last row: the normal way enumeration ends
class EndOfTable(MapctlError):
    pass
