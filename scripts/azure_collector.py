#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Azure resource collector
========================

Builds one TopologyModel per virtual network of a subscription from the
Azure network management SDK. Network interfaces and load balancers are
listed once per subscription and shared by every VNet snapshot, so backend
pool members living in another VNet still resolve.

Instance NICs of uniform scale sets are not returned by the subscription-wide
NIC listing, so they are listed per scale set for every scale set that a
subnet or backend pool references.

A route table, NAT gateway or scale set that cannot be fetched is left out
of the snapshot; the classification engine then reports the subnet as
unresolvable instead of guessing.

Author: Aviatrix Systems, Inc.
Copyright © 2025 Aviatrix Systems, Inc. All rights reserved.
"""

from typing import Dict, List, Optional

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from console import Colors, print_failure
from egress_errors import ResourceIdError
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
from resource_ids import extract_resource_group, normalize_resource_id, parse_resource_id, resource_name

SCALE_SET_TYPE = 'Microsoft.Compute/virtualMachineScaleSets'


def _ref_id(reference) -> Optional[str]:
    """ID of an SDK SubResource, tolerating None and missing attributes"""
    if reference is None:
        return None
    return getattr(reference, 'id', None)


def _ids(references) -> tuple:
    return tuple(ref_id for ref_id in (_ref_id(ref) for ref in (references or [])) if ref_id)


def scale_set_of(resource_id: str) -> Optional[tuple]:
    """(resource group, name) of the scale set owning an instance NIC or IP configuration, if any"""
    try:
        parsed = parse_resource_id(resource_id)
    except ResourceIdError:
        return None
    if f"{parsed.namespace}/{parsed.types[0]}".lower() != SCALE_SET_TYPE.lower():
        return None
    return parsed.resource_group, parsed.names[0]


def translate_subnet(sdk_subnet) -> Subnet:
    prefixes = list(getattr(sdk_subnet, 'address_prefixes', None) or [])
    if not prefixes and getattr(sdk_subnet, 'address_prefix', None):
        prefixes = [sdk_subnet.address_prefix]
    return Subnet(
        id=sdk_subnet.id,
        name=sdk_subnet.name,
        address_prefixes=tuple(prefixes),
        route_table_id=_ref_id(getattr(sdk_subnet, 'route_table', None)),
        nat_gateway_id=_ref_id(getattr(sdk_subnet, 'nat_gateway', None)),
        ip_configuration_ids=_ids(getattr(sdk_subnet, 'ip_configurations', None)),
        default_outbound_access=getattr(sdk_subnet, 'default_outbound_access', None),
    )


def translate_virtual_network(sdk_vnet) -> VirtualNetwork:
    address_space = sdk_vnet.address_space.address_prefixes if sdk_vnet.address_space else []
    return VirtualNetwork(
        id=sdk_vnet.id,
        name=sdk_vnet.name,
        resource_group=extract_resource_group(sdk_vnet.id),
        location=sdk_vnet.location,
        address_space=tuple(address_space or []),
        subnets=tuple(translate_subnet(subnet) for subnet in (sdk_vnet.subnets or [])),
    )


def translate_network_interface(sdk_nic) -> NetworkInterface:
    configurations = []
    for ip_config in sdk_nic.ip_configurations or []:
        configurations.append(NicIpConfiguration(
            id=ip_config.id,
            name=ip_config.name,
            subnet_id=_ref_id(ip_config.subnet),
            private_ip=getattr(ip_config, 'private_ip_address', None),
            public_ip_id=_ref_id(getattr(ip_config, 'public_ip_address', None)),
        ))
    return NetworkInterface(
        id=sdk_nic.id,
        name=sdk_nic.name,
        virtual_machine_id=_ref_id(getattr(sdk_nic, 'virtual_machine', None)),
        ip_configurations=tuple(configurations),
    )


def translate_route_table(sdk_route_table) -> RouteTable:
    routes = []
    for route in sdk_route_table.routes or []:
        routes.append(Route(
            name=route.name,
            address_prefix=route.address_prefix,
            next_hop_type=NextHopType.from_provider(route.next_hop_type),
            next_hop_ip=getattr(route, 'next_hop_ip_address', None),
        ))
    return RouteTable(id=sdk_route_table.id, name=sdk_route_table.name, routes=tuple(routes))


def translate_nat_gateway(sdk_nat_gateway) -> NatGateway:
    return NatGateway(
        id=sdk_nat_gateway.id,
        name=sdk_nat_gateway.name,
        public_ip_ids=_ids(getattr(sdk_nat_gateway, 'public_ip_addresses', None)),
        public_ip_prefix_ids=_ids(getattr(sdk_nat_gateway, 'public_ip_prefixes', None)),
    )


def translate_load_balancer(sdk_lb) -> LoadBalancer:
    pools = []
    for pool in sdk_lb.backend_address_pools or []:
        members = list(_ids(getattr(pool, 'backend_ip_configurations', None)))
        # Pools populated by NIC through the backend address API
        for address in getattr(pool, 'load_balancer_backend_addresses', None) or []:
            member_id = _ref_id(getattr(address, 'network_interface_ip_configuration', None))
            if member_id and member_id not in members:
                members.append(member_id)
        pools.append(BackendAddressPool(id=pool.id, name=pool.name, member_ip_configuration_ids=tuple(members)))

    rules = []
    for rule in sdk_lb.outbound_rules or []:
        pool_id = _ref_id(rule.backend_address_pool)
        if pool_id:
            rules.append(OutboundRule(id=rule.id, name=rule.name, backend_pool_id=pool_id))

    sku = sdk_lb.sku.name if getattr(sdk_lb, 'sku', None) else None
    return LoadBalancer(
        id=sdk_lb.id,
        name=sdk_lb.name,
        location=sdk_lb.location,
        sku=LoadBalancerSku.from_provider(sku),
        backend_pools=tuple(pools),
        outbound_rules=tuple(rules),
    )


class AzureTopologyCollector:
    """Collects topology snapshots for every VNet of one subscription"""

    def __init__(self, network_client, subscription_id, verbose=False):
        self.network_client = network_client
        self.subscription_id = subscription_id
        self.verbose = verbose
        self._network_interfaces = None
        self._load_balancers = None
        self._route_tables: Dict[str, Optional[RouteTable]] = {}
        self._nat_gateways: Dict[str, Optional[NatGateway]] = {}
        self._scale_set_interfaces: Dict[tuple, List[NetworkInterface]] = {}

    @property
    def network_interfaces(self) -> List[NetworkInterface]:
        if self._network_interfaces is None:
            self._network_interfaces = [
                translate_network_interface(nic) for nic in self.network_client.network_interfaces.list_all()
            ]
        return self._network_interfaces

    @property
    def load_balancers(self) -> List[LoadBalancer]:
        if self._load_balancers is None:
            self._load_balancers = [
                translate_load_balancer(lb) for lb in self.network_client.load_balancers.list_all()
            ]
        return self._load_balancers

    def list_virtual_networks(self):
        return list(self.network_client.virtual_networks.list_all())

    def collect(self) -> List[TopologyModel]:
        """Snapshot every VNet in the subscription, skipping any that fail to translate"""
        topologies = []
        for sdk_vnet in self.list_virtual_networks():
            try:
                topologies.append(self.collect_vnet(sdk_vnet))
            except (HttpResponseError, AttributeError, TypeError) as e:
                print_failure(f"Error collecting VNet {getattr(sdk_vnet, 'name', '?')}: {str(e)}", self.verbose)
        return topologies

    def collect_vnet(self, sdk_vnet) -> TopologyModel:
        vnet = translate_virtual_network(sdk_vnet)
        if self.verbose:
            print(f"{Colors.CYAN}  Collecting VNet: {vnet.name} (RG: {vnet.resource_group}){Colors.ENDC}")

        route_tables = []
        nat_gateways = []
        for subnet in vnet.subnets:
            if subnet.route_table_id:
                route_table = self._fetch_route_table(subnet.route_table_id, subnet.name)
                if route_table and route_table not in route_tables:
                    route_tables.append(route_table)
            if subnet.nat_gateway_id:
                nat_gateway = self._fetch_nat_gateway(subnet.nat_gateway_id, subnet.name)
                if nat_gateway and nat_gateway not in nat_gateways:
                    nat_gateways.append(nat_gateway)

        return TopologyModel(
            virtual_network=vnet,
            route_tables=route_tables,
            nat_gateways=nat_gateways,
            network_interfaces=self.network_interfaces + self.scale_set_interfaces_for(vnet),
            load_balancers=self.load_balancers,
        )

    def _fetch_route_table(self, route_table_id, subnet_name) -> Optional[RouteTable]:
        key = normalize_resource_id(route_table_id)
        if key not in self._route_tables:
            try:
                sdk_route_table = self.network_client.route_tables.get(
                    extract_resource_group(route_table_id), resource_name(route_table_id))
                self._route_tables[key] = translate_route_table(sdk_route_table)
            except (ResourceNotFoundError, HttpResponseError) as e:
                print(f"{Colors.YELLOW}      ! Error fetching route table for subnet {subnet_name}: {str(e)}{Colors.ENDC}")
                self._route_tables[key] = None
        return self._route_tables[key]

    def _fetch_nat_gateway(self, nat_gateway_id, subnet_name) -> Optional[NatGateway]:
        key = normalize_resource_id(nat_gateway_id)
        if key not in self._nat_gateways:
            try:
                sdk_nat_gateway = self.network_client.nat_gateways.get(
                    extract_resource_group(nat_gateway_id), resource_name(nat_gateway_id))
                self._nat_gateways[key] = translate_nat_gateway(sdk_nat_gateway)
            except (ResourceNotFoundError, HttpResponseError) as e:
                print(f"{Colors.YELLOW}      ! Error fetching NAT gateway for subnet {subnet_name}: {str(e)}{Colors.ENDC}")
                self._nat_gateways[key] = None
        return self._nat_gateways[key]

    def scale_set_interfaces_for(self, vnet: VirtualNetwork) -> List[NetworkInterface]:
        """Instance NICs of every scale set referenced by the VNet's subnets or by a backend pool"""
        references = [reference for subnet in vnet.subnets for reference in subnet.ip_configuration_ids]
        references.extend(
            member_id
            for lb in self.load_balancers
            for pool in lb.backend_pools
            for member_id in pool.member_ip_configuration_ids
        )

        interfaces = []
        seen = set()
        for reference in references:
            scale_set = scale_set_of(reference)
            if scale_set is None:
                continue
            key = tuple(part.lower() for part in scale_set)
            if key not in seen:
                seen.add(key)
                interfaces.extend(self._fetch_scale_set_interfaces(*scale_set))
        return interfaces

    def _fetch_scale_set_interfaces(self, resource_group, scale_set_name) -> List[NetworkInterface]:
        key = (resource_group.lower(), scale_set_name.lower())
        if key not in self._scale_set_interfaces:
            try:
                sdk_nics = self.network_client.network_interfaces.list_virtual_machine_scale_set_network_interfaces(
                    resource_group, scale_set_name)
                self._scale_set_interfaces[key] = [translate_network_interface(nic) for nic in sdk_nics]
            except (ResourceNotFoundError, HttpResponseError) as e:
                print(f"{Colors.YELLOW}      ! Error listing NICs of scale set {scale_set_name}: {str(e)}{Colors.ENDC}")
                self._scale_set_interfaces[key] = []
        return self._scale_set_interfaces[key]
