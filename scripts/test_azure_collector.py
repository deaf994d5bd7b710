#!/usr/bin/env python3
"""
Tests for the Azure topology collector
Uses SDK-shaped stand-in objects, no Azure authentication required
"""

import os
import sys
import unittest
from types import SimpleNamespace
from unittest.mock import Mock, call, patch

# Add the script directory to Python path
sys.path.insert(0, os.path.dirname(__file__))

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

import azure_collector
from egress_engine import ErrorKind, classify
from egress_fixtures import (
    SUBSCRIPTION_ID,
    compute_id,
    ip_configuration_id,
    network_id,
    scale_set_nic_id,
    subnet_id,
    vnet_id,
)
from egress_policies import Outcome
from egress_topology import LoadBalancerSku, NextHopType


def ref(resource_id):
    return SimpleNamespace(id=resource_id)


def sdk_nic(name, subnet_name, vm=True, public_ip=False):
    return SimpleNamespace(
        id=network_id(f'networkInterfaces/{name}'),
        name=name,
        virtual_machine=ref(f'/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/egress-lab-rg'
                            f'/providers/Microsoft.Compute/virtualMachines/{name}-vm') if vm else None,
        ip_configurations=[SimpleNamespace(
            id=ip_configuration_id(name),
            name='ipconfig1',
            subnet=ref(subnet_id(subnet_name)),
            private_ip_address='10.0.1.4',
            public_ip_address=ref(network_id(f'publicIPAddresses/{name}-pip')) if public_ip else None,
        )],
    )


def sdk_scale_set_nic(scale_set, instance, subnet_name, resource_group='egress-lab-rg', vnet='lab-vnet'):
    nic_id = scale_set_nic_id(scale_set, instance, resource_group)
    return SimpleNamespace(
        id=nic_id,
        name=f'{scale_set}-nic',
        virtual_machine=ref(compute_id(f'virtualMachineScaleSets/{scale_set}/virtualMachines/{instance}',
                                       resource_group)),
        ip_configurations=[SimpleNamespace(
            id=f'{nic_id}/ipConfigurations/ipconfig1',
            name='ipconfig1',
            subnet=ref(subnet_id(subnet_name, vnet)),
            private_ip_address='10.1.0.4',
            public_ip_address=None,
        )],
    )


def sdk_subnet(name, nics=(), route_table=None, nat_gateway=None, **extra):
    fields = dict(
        id=subnet_id(name),
        name=name,
        address_prefix='10.0.1.0/24',
        address_prefixes=None,
        route_table=ref(route_table) if route_table else None,
        nat_gateway=ref(nat_gateway) if nat_gateway else None,
        ip_configurations=[ref(ip_configuration_id(nic.name)) for nic in nics],
    )
    fields.update(extra)
    return SimpleNamespace(**fields)


def sdk_vnet(subnets):
    return SimpleNamespace(
        id=vnet_id(),
        name='lab-vnet',
        location='eastus',
        address_space=SimpleNamespace(address_prefixes=['10.0.0.0/16']),
        subnets=subnets,
    )


class TestTranslation(unittest.TestCase):
    """Test conversion of SDK models into the topology model"""

    def test_translate_subnet_falls_back_to_single_prefix(self):
        subnet = azure_collector.translate_subnet(sdk_subnet('snet-app'))
        self.assertEqual(subnet.address_prefixes, ('10.0.1.0/24',))
        self.assertIsNone(subnet.route_table_id)
        self.assertIsNone(subnet.default_outbound_access)

    def test_translate_subnet_keeps_default_outbound_access(self):
        subnet = azure_collector.translate_subnet(
            sdk_subnet('snet-app', address_prefixes=['10.0.1.0/25', '10.0.1.128/25'], default_outbound_access=False))
        self.assertEqual(subnet.address_prefixes, ('10.0.1.0/25', '10.0.1.128/25'))
        self.assertFalse(subnet.default_outbound_access)

    def test_translate_network_interface(self):
        nic = azure_collector.translate_network_interface(sdk_nic('nic-app', 'snet-app', public_ip=True))
        self.assertTrue(nic.is_vm_attached)
        self.assertTrue(nic.has_public_ip)
        self.assertEqual(nic.ip_configurations[0].subnet_id, subnet_id('snet-app'))

    def test_translate_route_table(self):
        route_table = azure_collector.translate_route_table(SimpleNamespace(
            id=network_id('routeTables/rt'), name='rt',
            routes=[SimpleNamespace(name='default', address_prefix='0.0.0.0/0',
                                    next_hop_type='VirtualAppliance', next_hop_ip_address='10.0.0.4')],
        ))
        self.assertEqual(route_table.routes[0].next_hop_type, NextHopType.VIRTUAL_APPLIANCE)
        self.assertEqual(route_table.routes[0].next_hop_ip, '10.0.0.4')
        self.assertEqual(len(route_table.default_routes()), 1)

    def test_translate_load_balancer(self):
        lb_id = network_id('loadBalancers/lb')
        pool_id = f'{lb_id}/backendAddressPools/pool'
        lb = azure_collector.translate_load_balancer(SimpleNamespace(
            id=lb_id, name='lb', location='eastus',
            sku=SimpleNamespace(name='Standard'),
            backend_address_pools=[SimpleNamespace(
                id=pool_id, name='pool',
                backend_ip_configurations=[ref(ip_configuration_id('nic-a'))],
                load_balancer_backend_addresses=[
                    SimpleNamespace(network_interface_ip_configuration=ref(ip_configuration_id('nic-a'))),
                    SimpleNamespace(network_interface_ip_configuration=ref(ip_configuration_id('nic-b'))),
                    SimpleNamespace(network_interface_ip_configuration=None),
                ],
            )],
            outbound_rules=[SimpleNamespace(id=f'{lb_id}/outboundRules/out', name='out',
                                            backend_address_pool=ref(pool_id))],
        ))
        self.assertEqual(lb.sku, LoadBalancerSku.STANDARD)
        self.assertEqual(lb.backend_pools[0].member_ip_configuration_ids,
                         (ip_configuration_id('nic-a'), ip_configuration_id('nic-b')))
        self.assertEqual(lb.outbound_pool_ids(), {pool_id.lower()})

    def test_translate_load_balancer_without_sku_is_basic(self):
        lb = azure_collector.translate_load_balancer(SimpleNamespace(
            id=network_id('loadBalancers/lb'), name='lb', location='eastus', sku=None,
            backend_address_pools=None, outbound_rules=None,
        ))
        self.assertEqual(lb.sku, LoadBalancerSku.BASIC)
        self.assertEqual(lb.backend_pools, ())


class TestAzureTopologyCollector(unittest.TestCase):
    """Test snapshot assembly against a mocked NetworkManagementClient"""

    def setUp(self):
        self.nic_nat = sdk_nic('nic-nat', 'snet-nat')
        self.nic_udr = sdk_nic('nic-udr', 'snet-udr')
        self.rt_id = network_id('routeTables/rt-appliance')
        self.nat_id = network_id('natGateways/natgw')

        self.network_client = Mock()
        self.network_client.virtual_networks.list_all.return_value = [sdk_vnet([
            sdk_subnet('snet-nat', [self.nic_nat], nat_gateway=self.nat_id),
            sdk_subnet('snet-udr', [self.nic_udr], route_table=self.rt_id),
        ])]
        self.network_client.network_interfaces.list_all.return_value = [self.nic_nat, self.nic_udr]
        self.network_client.load_balancers.list_all.return_value = []
        self.network_client.route_tables.get.return_value = SimpleNamespace(
            id=self.rt_id, name='rt-appliance',
            routes=[SimpleNamespace(name='default', address_prefix='0.0.0.0/0', next_hop_type='VirtualAppliance')],
        )
        self.network_client.nat_gateways.get.return_value = SimpleNamespace(
            id=self.nat_id, name='natgw', public_ip_addresses=[ref(network_id('publicIPAddresses/natgw-pip'))],
            public_ip_prefixes=None,
        )

    def test_collect_builds_classifiable_snapshot(self):
        collector = azure_collector.AzureTopologyCollector(self.network_client, SUBSCRIPTION_ID)
        topologies = collector.collect()

        self.assertEqual(len(topologies), 1)
        topology = topologies[0]
        self.assertEqual(topology.virtual_network.resource_group, 'egress-lab-rg')
        self.network_client.route_tables.get.assert_called_once_with('egress-lab-rg', 'rt-appliance')
        self.network_client.nat_gateways.get.assert_called_once_with('egress-lab-rg', 'natgw')

        verdicts, errors = classify(topology, 'v2.2')
        self.assertEqual(errors, [])
        self.assertEqual([verdict.outcome for verdict in verdicts], [Outcome.NOT_FLAGGED, Outcome.NOT_FLAGGED])

    def test_subscription_lists_are_fetched_once(self):
        self.network_client.virtual_networks.list_all.return_value = [sdk_vnet([]), sdk_vnet([])]
        collector = azure_collector.AzureTopologyCollector(self.network_client, SUBSCRIPTION_ID)
        collector.collect()

        self.assertEqual(self.network_client.network_interfaces.list_all.call_count, 1)
        self.assertEqual(self.network_client.load_balancers.list_all.call_count, 1)

    @patch('builtins.print')
    def test_route_table_fetch_failure_degrades_subnet(self, mock_print):
        """A route table that cannot be read becomes an evaluation error, not a pass"""
        self.network_client.route_tables.get.side_effect = ResourceNotFoundError('route table not found')
        collector = azure_collector.AzureTopologyCollector(self.network_client, SUBSCRIPTION_ID)
        topology = collector.collect()[0]

        self.assertEqual(topology.route_tables, ())
        verdicts, errors = classify(topology, 'v2.2')
        self.assertEqual([verdict.subnet_name for verdict in verdicts], ['snet-nat'])
        self.assertEqual(errors[0].subnet_name, 'snet-udr')
        self.assertEqual(errors[0].kind, ErrorKind.UNRESOLVABLE_REFERENCE)
        self.assertTrue(mock_print.called)

    def test_scale_set_instance_nics_are_listed(self):
        instance = sdk_scale_set_nic('vmss-app', 0, 'snet-vmss')
        self.network_client.virtual_networks.list_all.return_value = [sdk_vnet([
            sdk_subnet('snet-vmss', ip_configurations=[ref(instance.ip_configurations[0].id)]),
        ])]
        list_scale_set_nics = self.network_client.network_interfaces.list_virtual_machine_scale_set_network_interfaces
        list_scale_set_nics.return_value = [instance]

        topology = azure_collector.AzureTopologyCollector(self.network_client, SUBSCRIPTION_ID).collect()[0]

        list_scale_set_nics.assert_called_once_with('egress-lab-rg', 'vmss-app')
        verdicts, errors = classify(topology, 'v2.2')
        self.assertEqual(errors, [])
        self.assertEqual(verdicts[0].outcome, Outcome.FLAGGED)
        self.assertEqual(verdicts[0].vm_nic_count, 1)

    def test_backend_pool_scale_sets_are_listed_once(self):
        """Cluster node pools behind a load balancer resolve to their own subnet"""
        node = sdk_scale_set_nic('aks-nodepool', 0, 'aks-subnet', resource_group='MC_aks', vnet='aks-vnet')
        lb_id = network_id('loadBalancers/kubernetes', 'MC_aks')
        pool_id = f'{lb_id}/backendAddressPools/aksOutboundBackendPool'
        self.network_client.load_balancers.list_all.return_value = [SimpleNamespace(
            id=lb_id, name='kubernetes', location='eastus', sku=SimpleNamespace(name='Standard'),
            backend_address_pools=[SimpleNamespace(id=pool_id, name='aksOutboundBackendPool',
                                                   backend_ip_configurations=[ref(node.ip_configurations[0].id)])],
            outbound_rules=[SimpleNamespace(id=f'{lb_id}/outboundRules/aksOutboundRule', name='aksOutboundRule',
                                            backend_address_pool=ref(pool_id))],
        )]
        self.network_client.virtual_networks.list_all.return_value = [
            sdk_vnet([sdk_subnet('snet-nat', [self.nic_nat])]),
            sdk_vnet([sdk_subnet('snet-udr', [self.nic_udr])]),
        ]
        list_scale_set_nics = self.network_client.network_interfaces.list_virtual_machine_scale_set_network_interfaces
        list_scale_set_nics.return_value = [node]

        topologies = azure_collector.AzureTopologyCollector(self.network_client, SUBSCRIPTION_ID).collect()

        self.assertEqual(list_scale_set_nics.call_args_list, [call('MC_aks', 'aks-nodepool')])
        verdicts, errors = classify(topologies[0], 'v2.2')
        self.assertEqual(errors, [])
        self.assertEqual([verdict.outcome for verdict in verdicts], [Outcome.FLAGGED])
        self.assertFalse(verdicts[0].has_lb_outbound_rule)

    @patch('builtins.print')
    def test_scale_set_listing_failure_degrades_subnet(self, mock_print):
        instance = sdk_scale_set_nic('vmss-app', 0, 'snet-vmss')
        self.network_client.virtual_networks.list_all.return_value = [sdk_vnet([
            sdk_subnet('snet-vmss', ip_configurations=[ref(instance.ip_configurations[0].id)]),
        ])]
        self.network_client.network_interfaces.list_virtual_machine_scale_set_network_interfaces.side_effect = (
            HttpResponseError('throttled'))

        topology = azure_collector.AzureTopologyCollector(self.network_client, SUBSCRIPTION_ID).collect()[0]

        verdicts, errors = classify(topology, 'v2.2', include_not_applicable=True)
        self.assertEqual(verdicts, [])
        self.assertEqual(errors[0].kind, ErrorKind.UNRESOLVABLE_REFERENCE)
        self.assertTrue(mock_print.called)

    @patch('builtins.print')
    def test_vnet_translation_failure_is_skipped(self, mock_print):
        broken = SimpleNamespace(id=vnet_id('broken'), name='broken', location='eastus',
                                 address_space=None, subnets=[SimpleNamespace(id=None)])
        self.network_client.virtual_networks.list_all.return_value = [broken]
        collector = azure_collector.AzureTopologyCollector(self.network_client, SUBSCRIPTION_ID)

        self.assertEqual(collector.collect(), [])
        self.assertTrue(mock_print.called)


if __name__ == '__main__':
    unittest.main(verbosity=2)
