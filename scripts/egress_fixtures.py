#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Topology builders shared by the test modules.

``lab_topology`` mirrors the reference lab: one VNet whose subnets each
exercise a single egress mechanism.

Author: Aviatrix Systems, Inc.
Copyright © 2025 Aviatrix Systems, Inc. All rights reserved.
"""

from egress_topology import (
    BackendAddressPool,
    LoadBalancer,
    LoadBalancerSku,
    NatGateway,
    NetworkInterface,
    NextHopType,
    NicIpConfiguration,
    OutboundRule,
    Route,
    RouteTable,
    Subnet,
    TopologyModel,
    VirtualNetwork,
)

SUBSCRIPTION_ID = '00000000-0000-0000-0000-000000000001'
RESOURCE_GROUP = 'egress-lab-rg'
LOCATION = 'eastus'


def network_id(path, resource_group=RESOURCE_GROUP):
    return (f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/{resource_group}"
            f"/providers/Microsoft.Network/{path}")


def vnet_id(name='lab-vnet'):
    return network_id(f'virtualNetworks/{name}')


def subnet_id(name, vnet='lab-vnet'):
    return f"{vnet_id(vnet)}/subnets/{name}"


def ip_configuration_id(nic_name):
    return network_id(f'networkInterfaces/{nic_name}/ipConfigurations/ipconfig1')


def make_nic(name, subnet_name, vm=True, public_ip=False, vnet='lab-vnet'):
    return NetworkInterface(
        id=network_id(f'networkInterfaces/{name}'),
        name=name,
        virtual_machine_id=(f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/{RESOURCE_GROUP}"
                            f"/providers/Microsoft.Compute/virtualMachines/{name}-vm") if vm else None,
        ip_configurations=(NicIpConfiguration(
            id=ip_configuration_id(name),
            name='ipconfig1',
            subnet_id=subnet_id(subnet_name, vnet),
            private_ip='10.0.0.4',
            public_ip_id=network_id(f'publicIPAddresses/{name}-pip') if public_ip else None,
        ),),
    )


def compute_id(path, resource_group=RESOURCE_GROUP):
    return (f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/{resource_group}"
            f"/providers/Microsoft.Compute/{path}")


def scale_set_nic_id(scale_set, instance, resource_group=RESOURCE_GROUP):
    return compute_id(f'virtualMachineScaleSets/{scale_set}/virtualMachines/{instance}'
                      f'/networkInterfaces/{scale_set}-nic', resource_group)


def make_scale_set_nic(scale_set, instance, subnet_name, vnet='lab-vnet', resource_group=RESOURCE_GROUP):
    """Instance NIC of a uniform scale set VM"""
    nic_id = scale_set_nic_id(scale_set, instance, resource_group)
    return NetworkInterface(
        id=nic_id,
        name=f'{scale_set}-nic',
        virtual_machine_id=compute_id(f'virtualMachineScaleSets/{scale_set}/virtualMachines/{instance}',
                                      resource_group),
        ip_configurations=(NicIpConfiguration(
            id=f'{nic_id}/ipConfigurations/ipconfig1',
            name='ipconfig1',
            subnet_id=subnet_id(subnet_name, vnet),
            private_ip='10.1.0.4',
        ),),
    )


def make_subnet(name, nics=(), route_table=None, nat_gateway=None, extra_ip_configurations=(),
                default_outbound_access=None, vnet='lab-vnet'):
    return Subnet(
        id=subnet_id(name, vnet),
        name=name,
        address_prefixes=('10.0.1.0/24',),
        route_table_id=route_table.id if route_table else None,
        nat_gateway_id=nat_gateway.id if nat_gateway else None,
        ip_configuration_ids=tuple(config.id for nic in nics for config in nic.ip_configurations)
        + tuple(extra_ip_configurations),
        default_outbound_access=default_outbound_access,
    )


def make_route_table(name, *next_hops, prefix='0.0.0.0/0'):
    routes = tuple(
        Route(name=f'route-{index}', address_prefix=prefix, next_hop_type=NextHopType(hop))
        for index, hop in enumerate(next_hops)
    )
    return RouteTable(id=network_id(f'routeTables/{name}'), name=name, routes=routes)


def make_nat_gateway(name):
    return NatGateway(id=network_id(f'natGateways/{name}'), name=name,
                      public_ip_ids=(network_id(f'publicIPAddresses/{name}-pip'),))


def make_load_balancer(name, sku=LoadBalancerSku.STANDARD, pools=None, outbound_pools=(),
                       location=LOCATION, resource_group=RESOURCE_GROUP):
    """``pools`` maps pool name to member NICs; ``outbound_pools`` names pools with an outbound rule"""
    lb_id = network_id(f'loadBalancers/{name}', resource_group)
    backend_pools = tuple(
        BackendAddressPool(
            id=f"{lb_id}/backendAddressPools/{pool_name}",
            name=pool_name,
            member_ip_configuration_ids=tuple(config.id for nic in members for config in nic.ip_configurations),
        )
        for pool_name, members in (pools or {}).items()
    )
    outbound_rules = tuple(
        OutboundRule(id=f"{lb_id}/outboundRules/{pool_name}-outbound", name=f'{pool_name}-outbound',
                     backend_pool_id=f"{lb_id}/backendAddressPools/{pool_name}")
        for pool_name in outbound_pools
    )
    return LoadBalancer(id=lb_id, name=name, location=location, sku=sku,
                        backend_pools=backend_pools, outbound_rules=outbound_rules)


def make_topology(subnets, nics=(), route_tables=(), nat_gateways=(), load_balancers=(), name='lab-vnet'):
    vnet = VirtualNetwork(
        id=vnet_id(name),
        name=name,
        resource_group=RESOURCE_GROUP,
        location=LOCATION,
        address_space=('10.0.0.0/16',),
        subnets=tuple(subnets),
    )
    return TopologyModel(vnet, route_tables=route_tables, nat_gateways=nat_gateways,
                         network_interfaces=nics, load_balancers=load_balancers)


def lab_topology():
    """One subnet per lab scenario, plus an empty subnet"""
    nic_default = make_nic('nic-default', 'snet-default')
    nic_pip = make_nic('nic-pip', 'snet-public-ip', public_ip=True)
    nic_nat = make_nic('nic-nat', 'snet-nat')
    nic_lb = make_nic('nic-lb', 'snet-lb')
    nic_nva = make_nic('nic-nva', 'snet-udr-appliance')
    nic_internet = make_nic('nic-internet', 'snet-udr-internet')

    nat_gateway = make_nat_gateway('lab-natgw')
    rt_appliance = make_route_table('rt-appliance', 'VirtualAppliance')
    rt_internet = make_route_table('rt-internet', 'Internet')
    lb = make_load_balancer('lab-lb', pools={'outbound-pool': [nic_lb]}, outbound_pools=['outbound-pool'])

    subnets = [
        make_subnet('snet-default', [nic_default]),
        make_subnet('snet-public-ip', [nic_pip]),
        make_subnet('snet-nat', [nic_nat], nat_gateway=nat_gateway),
        make_subnet('snet-lb', [nic_lb]),
        make_subnet('snet-udr-appliance', [nic_nva], route_table=rt_appliance),
        make_subnet('snet-udr-internet', [nic_internet], route_table=rt_internet),
        make_subnet('snet-empty'),
    ]
    return make_topology(
        subnets,
        nics=[nic_default, nic_pip, nic_nat, nic_lb, nic_nva, nic_internet],
        route_tables=[rt_appliance, rt_internet],
        nat_gateways=[nat_gateway],
        load_balancers=[lb],
    )
