#!/usr/bin/env python3
"""
Tests for the command line: switch validation, dispatch and exit codes
"""

import unittest
from io import StringIO
from unittest.mock import Mock, patch

import mapctl
from errors import DiscoveryFailure, EnumerationFailure, InvalidArgument, MutationFailure
from fakes import FakeGateway, makeEntry, permissionError


def settingsFor(argv):
    verb, options = mapctl.parseCommandLine(argv)
    return verb, mapctl.validateOptions(verb, options)


ADD_ARGS = ['-e', '8080', '-l', '80', '-i', '192.0.2.5', '-p', 'tcp']


class TestValidation(unittest.TestCase):
    """Everything rejected here never reaches discovery"""

    def test_add_defaults(self):
        verb, settings = settingsFor(ADD_ARGS + ['add'])

        self.assertEqual(verb, 'ADD')
        self.assertEqual(settings['timeout'], 60)
        self.assertEqual(settings['protocol'], 'TCP')
        self.assertEqual(settings['leaseDuration'], 0)
        self.assertEqual(settings['description'], '')
        self.assertEqual(settings['host'], '')

    def test_port_bounds(self):
        for port in ('0', '65535'):
            _, settings = settingsFor(['-e', port, '-l', '80', '-i', '192.0.2.5', '-p', 'UDP', 'add'])
            self.assertEqual(settings['externalPort'], int(port))

        for port in ('65536', '-1', 'http'):
            with self.assertRaises(InvalidArgument):
                settingsFor(['-e', port, '-l', '80', '-i', '192.0.2.5', '-p', 'UDP', 'add'])

    def test_invalid_internal_host(self):
        for host in ('192.168.1.256', '192.168.01.1', 'router.local'):
            with self.assertRaises(InvalidArgument):
                settingsFor(['-e', '80', '-l', '80', '-i', host, '-p', 'TCP', 'add'])

    def test_invalid_protocol(self):
        with self.assertRaises(InvalidArgument):
            settingsFor(['-e', '80', '-l', '80', '-i', '192.0.2.5', '-p', 'SCTP', 'add'])

    def test_invalid_lease(self):
        for lease in ('-5', '4294967296', '99999999999'):
            with self.assertRaises(InvalidArgument):
                settingsFor(ADD_ARGS + ['-d', lease, 'add'])

    def test_lease_upper_bound(self):
        _, settings = settingsFor(ADD_ARGS + ['-d', '4294967295', 'add'])

        self.assertEqual(settings['leaseDuration'], 4294967295)

    def test_numbers_must_be_plain_digits(self):
        for port in ('8_0', '+80', ' 80 ', '80 '):
            with self.assertRaises(InvalidArgument):
                settingsFor(['-e', port, '-l', '80', '-i', '192.0.2.5', '-p', 'TCP', 'add'])
        with self.assertRaises(InvalidArgument):
            settingsFor(['-t', '+5', 'view'])

    def test_switches_after_verb(self):
        verb, settings = settingsFor(['add', '-e', '8080', '-l', '80', '-i', '192.0.2.5', '-p', 'TCP'])

        self.assertEqual(verb, 'ADD')
        self.assertEqual(settings['externalPort'], 8080)
        self.assertEqual(settings['internalHost'], '192.0.2.5')

    def test_switches_around_verb(self):
        verb, settings = settingsFor(['-t', '5', 'remove', '-p', 'udp', '-e', '53'])

        self.assertEqual(verb, 'REMOVE')
        self.assertEqual(settings['timeout'], 5)
        self.assertEqual(settings['protocol'], 'UDP')

    def test_invalid_timeout(self):
        for timeout in ('0', 'soon'):
            with self.assertRaises(InvalidArgument):
                settingsFor(['-t', timeout, 'view'])

    def test_missing_arguments(self):
        with self.assertRaises(InvalidArgument):
            settingsFor(['-e', '80', '-p', 'TCP', 'add'])
        with self.assertRaises(InvalidArgument):
            settingsFor(['-p', 'TCP', 'remove'])
        with self.assertRaises(InvalidArgument):
            settingsFor(['-e', '80', 'remove'])

    def test_clear_all_ignores_external_port(self):
        _, settings = settingsFor(['-a', '-p', 'BOTH', '-e', 'not-a-port', 'remove'])

        self.assertTrue(settings['clearAll'])
        self.assertNotIn('externalPort', settings)

    def test_unknown_verb(self):
        with self.assertRaises(InvalidArgument):
            settingsFor(['list'])
        with self.assertRaises(InvalidArgument):
            settingsFor([])

    def test_custom_action_names(self):
        _, settings = settingsFor(['--service', 'WANPPPConn1', '--remove-action', 'DeleteMapping', 'view'])

        self.assertEqual(settings['service'], 'WANPPPConn1')
        self.assertEqual(settings['actions'], {'remove': 'DeleteMapping'})


class TestRunCommand(unittest.TestCase):
    def setUp(self):
        self.output = []

    def run_command(self, argv, gateway):
        verb, settings = settingsFor(argv)
        discover = Mock(return_value=gateway)
        return mapctl.runCommand(verb, settings, discover=discover, report=self.output.append)

    def test_view(self):
        gateway = FakeGateway([makeEntry(8080, 'TCP', '192.168.1.10', 80, 'web'),
                               makeEntry(53, 'UDP', '192.168.1.11', description='dns', remoteHost='203.0.113.9')])

        outcome = self.run_command(['view'], gateway)

        self.assertEqual(outcome, mapctl.COMPLETED)
        self.assertEqual(len(self.output), 3)
        self.assertIn('8080/TCP', self.output[1])
        self.assertIn('80/TCP@192.168.1.10', self.output[1])
        self.assertTrue(self.output[1].startswith('*'))
        self.assertTrue(self.output[2].startswith('203.0.113.9'))

    def test_view_filter_and_ip(self):
        gateway = FakeGateway([makeEntry(8080, internalClient='192.168.1.10'),
                               makeEntry(9090, internalClient='192.168.1.11')])

        self.run_command(['--print-ip', '-f', '192.168.1.11', 'view'], gateway)

        self.assertEqual(self.output[0], 'Gateway IP: 192.168.1.1 | External IP: 198.51.100.7')
        self.assertEqual(len(self.output), 3)
        self.assertIn('9090/TCP', self.output[2])

    def test_view_empty_table(self):
        outcome = self.run_command(['view'], FakeGateway())

        self.assertEqual(outcome, mapctl.COMPLETED)
        self.assertEqual(self.output, ['No mapping found on the IGD.'])

    def test_add_both(self):
        gateway = FakeGateway()

        outcome = self.run_command(['-e', '25565', '-l', '25565', '-i', '192.168.1.30', '-p', 'both',
                                    '-n', 'minecraft', 'add'], gateway)

        self.assertEqual(outcome, mapctl.COMPLETED)
        self.assertEqual(gateway.mutations(), [('add', ('UDP', 25565)), ('add', ('TCP', 25565))])

    def test_remove_failure_propagates(self):
        gateway = FakeGateway()

        with self.assertRaises(MutationFailure):
            self.run_command(['-e', '25565', '-p', 'TCP', 'remove'], gateway)

    def test_clear_all_with_errors(self):
        gateway = FakeGateway([makeEntry(1000), makeEntry(2000), makeEntry(3000)])
        gateway.removeErrors[('TCP', 2000)] = MutationFailure('Error removing port mapping: denied', 606)

        outcome = self.run_command(['-a', '-p', 'TCP', 'remove'], gateway)

        self.assertEqual(outcome, mapctl.COMPLETED_WITH_ERRORS)
        self.assertEqual(len(gateway.mutations()), 3)
        self.assertIn('2000/TCP', self.output[-1])

    def test_clear_all_enumeration_failure(self):
        gateway = FakeGateway([makeEntry(1000), makeEntry(2000)])
        gateway.entryErrors[1] = permissionError()

        with self.assertRaises(EnumerationFailure):
            self.run_command(['-a', '-p', 'TCP', 'remove'], gateway)

        self.assertEqual(gateway.mutations(), [])


class TestMain(unittest.TestCase):
    """Exit codes and error reporting"""

    def main(self, argv, gateway=None, error=None):
        discover = Mock(return_value=gateway, side_effect=error)
        with patch('mapctl.discoverGateway', discover), patch('sys.stdout', new_callable=StringIO) as stdout:
            code = mapctl.main(argv)
        return code, stdout.getvalue(), discover

    def test_completed(self):
        code, output, _ = self.main(['-a', '-p', 'UDP', 'remove'], FakeGateway())

        self.assertEqual(code, 0)
        self.assertIn('No mappings to delete.', output)

    def test_invalid_argument_before_discovery(self):
        code, output, discover = self.main(['-e', '65536', '-l', '80', '-i', '192.0.2.5', '-p', 'TCP', 'add'])

        self.assertEqual(code, 1)
        self.assertIn('ERROR: Invalid external port', output)
        discover.assert_not_called()

    def test_verb_first(self):
        gateway = FakeGateway()

        code, output, _ = self.main(['add', '-e', '8080', '-l', '80', '-i', '192.0.2.5', '-p', 'TCP'], gateway)

        self.assertEqual(code, 0)
        self.assertIn('Added mapping: TCP ext:8080 -> 192.0.2.5:80', output)
        self.assertEqual(gateway.mutations(), [('add', ('TCP', 8080))])

    def test_unknown_switch(self):
        code, output, discover = self.main(['--bogus', 'view'])

        self.assertEqual(code, 1)
        self.assertIn('Usage:', output)
        discover.assert_not_called()

    def test_discovery_failure(self):
        code, output, _ = self.main(['view'], error=DiscoveryFailure('No IGD (Internet Gateway Device) found'))

        self.assertEqual(code, 1)
        self.assertIn('ERROR: No IGD', output)

    def test_completed_with_errors(self):
        gateway = FakeGateway([makeEntry(1000), makeEntry(2000), makeEntry(3000)])
        gateway.removeErrors[('TCP', 2000)] = MutationFailure('Error removing port mapping: denied', 606)

        code, output, _ = self.main(['--clear-all', '--protocol', 'TCP', 'remove'], gateway)

        self.assertEqual(code, 2)
        self.assertIn('Removed 2 of 3 mappings', output)
        self.assertIn('2000/TCP', output)

    def test_timeout_reaches_discovery(self):
        _, _, discover = self.main(['-t', '5', '-g', '10.0.0.1', 'view'], FakeGateway())

        discover.assert_called_once_with(5, address='10.0.0.1', serviceName='WANIPConn1', actions={})

    def test_help(self):
        code, output, discover = self.main(['--help'])

        self.assertEqual(code, 0)
        self.assertIn('VERBS', output)
        discover.assert_not_called()


if __name__ == '__main__':
    unittest.main()
