#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Topology model
==============

Read-only snapshot of one virtual network and the network resources its
subnets reference. The collector builds one TopologyModel per VNet per run;
the classification engine only reads it.

Author: Aviatrix Systems, Inc.
Copyright © 2025 Aviatrix Systems, Inc. All rights reserved.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from egress_errors import ResourceIdError, UnresolvableReferenceError
from resource_ids import (
    ResourceId,
    extract_resource_group,
    normalize_resource_id,
    parent_resource_id,
    parse_resource_id,
    same_resource,
)

DEFAULT_ROUTE_PREFIX = '0.0.0.0/0'
NIC_IP_CONFIGURATION_TYPE = 'Microsoft.Network/networkInterfaces/ipConfigurations'
# Uniform scale set instances own their NICs under Microsoft.Compute
SCALE_SET_NIC_IP_CONFIGURATION_TYPE = (
    'Microsoft.Compute/virtualMachineScaleSets/virtualMachines/networkInterfaces/ipConfigurations')


def is_nic_ip_configuration(parsed: ResourceId) -> bool:
    return parsed.is_type(NIC_IP_CONFIGURATION_TYPE) or parsed.is_type(SCALE_SET_NIC_IP_CONFIGURATION_TYPE)


class NextHopType(str, Enum):
    INTERNET = 'Internet'
    VIRTUAL_APPLIANCE = 'VirtualAppliance'
    VIRTUAL_NETWORK_GATEWAY = 'VirtualNetworkGateway'
    VNET_LOCAL = 'VnetLocal'
    NONE = 'None'
    OTHER = 'Other'

    @classmethod
    def from_provider(cls, value) -> 'NextHopType':
        """Map the SDK's next_hop_type (string or enum, any casing) onto NextHopType"""
        if isinstance(value, Enum):
            value = value.value
        if value is None:
            return cls.OTHER
        for member in cls:
            if member.value.lower() == str(value).lower():
                return member
        return cls.OTHER


class LoadBalancerSku(str, Enum):
    BASIC = 'Basic'
    STANDARD = 'Standard'
    GATEWAY = 'Gateway'

    @classmethod
    def from_provider(cls, value) -> 'LoadBalancerSku':
        # Azure treats a load balancer without an explicit SKU as Basic
        if isinstance(value, Enum):
            value = value.value
        for member in cls:
            if value and member.value.lower() == str(value).lower():
                return member
        return cls.BASIC


@dataclass(frozen=True)
class Route:
    name: str
    address_prefix: str
    next_hop_type: NextHopType
    next_hop_ip: Optional[str] = None

    @property
    def is_default(self) -> bool:
        return (self.address_prefix or '').strip() == DEFAULT_ROUTE_PREFIX


@dataclass(frozen=True)
class RouteTable:
    id: str
    name: str
    routes: Tuple[Route, ...] = ()

    def default_routes(self) -> List[Route]:
        return [route for route in self.routes if route.is_default]


@dataclass(frozen=True)
class NatGateway:
    id: str
    name: str
    public_ip_ids: Tuple[str, ...] = ()
    public_ip_prefix_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NicIpConfiguration:
    id: str
    name: str
    subnet_id: Optional[str] = None
    private_ip: Optional[str] = None
    public_ip_id: Optional[str] = None

    @property
    def has_public_ip(self) -> bool:
        return bool(self.public_ip_id)


@dataclass(frozen=True)
class NetworkInterface:
    id: str
    name: str
    virtual_machine_id: Optional[str] = None
    ip_configurations: Tuple[NicIpConfiguration, ...] = ()

    @property
    def is_vm_attached(self) -> bool:
        return bool(self.virtual_machine_id)

    @property
    def has_public_ip(self) -> bool:
        return any(config.has_public_ip for config in self.ip_configurations)

    def in_subnet(self, subnet_id: str) -> bool:
        key = normalize_resource_id(subnet_id)
        return any(normalize_resource_id(config.subnet_id) == key for config in self.ip_configurations)


@dataclass(frozen=True)
class BackendAddressPool:
    id: str
    name: str
    member_ip_configuration_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class OutboundRule:
    id: str
    name: str
    backend_pool_id: str


@dataclass(frozen=True)
class LoadBalancer:
    id: str
    name: str
    location: str
    sku: LoadBalancerSku = LoadBalancerSku.BASIC
    backend_pools: Tuple[BackendAddressPool, ...] = ()
    outbound_rules: Tuple[OutboundRule, ...] = ()

    @property
    def resource_group(self) -> str:
        return extract_resource_group(self.id)

    @property
    def is_standard(self) -> bool:
        return self.sku == LoadBalancerSku.STANDARD

    def outbound_pool_ids(self) -> set:
        """Normalized IDs of the backend pools referenced by an outbound rule"""
        return {normalize_resource_id(rule.backend_pool_id) for rule in self.outbound_rules}


@dataclass(frozen=True)
class Subnet:
    id: str
    name: str
    address_prefixes: Tuple[str, ...] = ()
    route_table_id: Optional[str] = None
    nat_gateway_id: Optional[str] = None
    ip_configuration_ids: Tuple[str, ...] = ()
    # Not exposed uniformly across API versions; advisory only
    default_outbound_access: Optional[bool] = None


@dataclass(frozen=True)
class VirtualNetwork:
    id: str
    name: str
    resource_group: str
    location: str
    address_space: Tuple[str, ...] = ()
    subnets: Tuple[Subnet, ...] = ()


def _index(resources: Iterable) -> Dict[str, object]:
    return {normalize_resource_id(resource.id): resource for resource in resources}


class TopologyModel:
    """Snapshot of one VNet with case-insensitive lookups by resource ID"""

    def __init__(self, virtual_network: VirtualNetwork, route_tables=(), nat_gateways=(),
                 network_interfaces=(), load_balancers=()):
        self.virtual_network = virtual_network
        self.route_tables = tuple(route_tables)
        self.nat_gateways = tuple(nat_gateways)
        self.network_interfaces = tuple(network_interfaces)
        self.load_balancers = tuple(load_balancers)

        self._route_tables = _index(self.route_tables)
        self._nat_gateways = _index(self.nat_gateways)
        self._network_interfaces = _index(self.network_interfaces)
        self._ip_configurations = {
            normalize_resource_id(config.id): (nic, config)
            for nic in self.network_interfaces
            for config in nic.ip_configurations
        }
        self._subnet_ids = {normalize_resource_id(subnet.id) for subnet in virtual_network.subnets}

    def __repr__(self):
        return (f"TopologyModel(vnet={self.virtual_network.name!r}, "
                f"subnets={len(self.subnets)}, nics={len(self.network_interfaces)}, "
                f"load_balancers={len(self.load_balancers)})")

    @property
    def subnets(self) -> Tuple[Subnet, ...]:
        return self.virtual_network.subnets

    def contains_subnet(self, subnet_id: Optional[str]) -> bool:
        return normalize_resource_id(subnet_id) in self._subnet_ids

    def route_table(self, route_table_id: str) -> RouteTable:
        try:
            return self._route_tables[normalize_resource_id(route_table_id)]
        except KeyError:
            raise UnresolvableReferenceError('route table', route_table_id) from None

    def nat_gateway(self, nat_gateway_id: str) -> NatGateway:
        try:
            return self._nat_gateways[normalize_resource_id(nat_gateway_id)]
        except KeyError:
            raise UnresolvableReferenceError('NAT gateway', nat_gateway_id) from None

    def network_interface(self, nic_id: str) -> NetworkInterface:
        try:
            return self._network_interfaces[normalize_resource_id(nic_id)]
        except KeyError:
            raise UnresolvableReferenceError('network interface', nic_id) from None

    def ip_configuration(self, ip_configuration_id: str) -> Tuple[NetworkInterface, NicIpConfiguration]:
        """Resolve a NIC IP configuration ID to its interface and configuration"""
        try:
            return self._ip_configurations[normalize_resource_id(ip_configuration_id)]
        except KeyError:
            pass
        if not is_nic_ip_configuration(parse_resource_id(ip_configuration_id)):
            raise UnresolvableReferenceError('IP configuration', ip_configuration_id)
        # Raises if the owning NIC is missing entirely
        self.network_interface(parent_resource_id(ip_configuration_id))
        raise UnresolvableReferenceError('IP configuration', ip_configuration_id)

    def pool_member_subnet_id(self, member_id: str) -> str:
        """Subnet ID of a backend pool member; a NIC configuration has exactly one subnet"""
        _nic, config = self.ip_configuration(member_id)
        if not config.subnet_id:
            raise UnresolvableReferenceError('subnet of backend pool member', member_id)
        return config.subnet_id

    def member_may_be_in_subnet(self, member_id: str, subnet: Subnet) -> bool:
        """Whether an unresolved backend pool member could still sit in ``subnet``

        Only NIC IP configurations host VM workloads. A NIC lives in the
        subscription of its VNet, and a subnet that lists IP configuration
        references lists every one it hosts.
        """
        try:
            parsed = parse_resource_id(member_id)
        except ResourceIdError:
            return True
        if not is_nic_ip_configuration(parsed):
            return False
        if parsed.subscription_id.lower() != parse_resource_id(subnet.id).subscription_id.lower():
            return False
        if subnet.ip_configuration_ids:
            return any(same_resource(member_id, reference) for reference in subnet.ip_configuration_ids)
        return True

    def interfaces_in_subnet(self, subnet: Subnet) -> List[NetworkInterface]:
        """NICs with an IP configuration in the subnet, in reference order

        Standalone and scale set instance NICs both count. References that
        belong to other resource kinds (load balancer frontends, private
        endpoints, gateways) are skipped.
        """
        found = []
        seen = set()
        for reference in subnet.ip_configuration_ids:
            if not is_nic_ip_configuration(parse_resource_id(reference)):
                continue
            nic, _config = self.ip_configuration(reference)
            key = normalize_resource_id(nic.id)
            if key not in seen:
                seen.add(key)
                found.append(nic)
        for nic in self.network_interfaces:
            key = normalize_resource_id(nic.id)
            if key not in seen and nic.in_subnet(subnet.id):
                seen.add(key)
                found.append(nic)
        return found

    def vm_attached_interfaces(self, subnet: Subnet) -> List[NetworkInterface]:
        return [nic for nic in self.interfaces_in_subnet(subnet) if nic.is_vm_attached]

    def vnet_interface_ids(self) -> set:
        """Normalized IDs of every NIC with a configuration in this VNet"""
        return {
            normalize_resource_id(nic.id)
            for nic in self.network_interfaces
            if any(self.contains_subnet(config.subnet_id) for config in nic.ip_configurations)
        }

    def load_balancers_in(self, resource_group: str, location: str) -> List[LoadBalancer]:
        return [
            lb for lb in self.load_balancers
            if lb.resource_group.lower() == (resource_group or '').lower()
            and (lb.location or '').lower() == (location or '').lower()
        ]
