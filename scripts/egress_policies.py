#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Egress classification policies
==============================

Each policy is a versioned rule set deciding, for one subnet of a topology
snapshot, whether the subnet depends on Azure's implicit default outbound
access. Policies are pure: they read the TopologyModel and return a Verdict,
raising an EgressEvaluationError when a reference they need cannot be
resolved.

Versions kept side by side so results can be compared across rule sets:

  v1   (legacy)        NAT Gateway and load balancer presence judged for the
                       whole VNet, any 0.0.0.0/0 route treated as risky.
  v2   (transitional)  Subnet-level NAT Gateway, NIC public IPs and any load
                       balancer backend membership; non-Internet default
                       routes count as explicit egress.
  v2.2 (refined)       Only Standard load balancers with an outbound rule for
                       the subnet's pool count; default routes judged by
                       next-hop type.

Author: Aviatrix Systems, Inc.
Copyright © 2025 Aviatrix Systems, Inc. All rights reserved.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

from egress_errors import EgressEvaluationError, UnresolvableReferenceError
from egress_topology import NextHopType, Subnet, TopologyModel, is_nic_ip_configuration
from resource_ids import normalize_resource_id, parent_resource_id, parse_resource_id, same_resource

REASON_NO_WORKLOADS = 'no VM-attached NIC'
REASON_NO_EGRESS = 'no egress'
REASON_RISKY_UDR = 'risky UDR'
REASON_NO_EXPLICIT_EGRESS = 'no explicit egress'
REASON_RISKY_UDR_INTERNET = 'risky UDR to Internet'

EXPLICIT_NEXT_HOPS = (NextHopType.VIRTUAL_APPLIANCE, NextHopType.VIRTUAL_NETWORK_GATEWAY)


class Outcome(str, Enum):
    NOT_APPLICABLE = 'NotApplicable'
    FLAGGED = 'Flagged'
    NOT_FLAGGED = 'NotFlagged'


class PolicyVersion(str, Enum):
    LEGACY = 'v1'
    TRANSITIONAL = 'v2'
    REFINED = 'v2.2'


@dataclass(frozen=True)
class Verdict:
    """Classification of one subnet plus the evidence behind it"""
    vnet_id: str
    vnet_name: str
    subnet_id: str
    subnet_name: str
    address_prefixes: Tuple[str, ...]
    policy_version: PolicyVersion
    outcome: Outcome
    reason: str
    has_udr: bool = False
    has_internet_default_route: bool = False
    has_appliance_or_gateway_default_route: bool = False
    has_nat_gateway: bool = False
    has_lb_outbound_rule: bool = False
    has_nic_public_ip: bool = False
    has_vm_attached_nic: bool = False
    default_route_next_hops: Tuple[str, ...] = ()
    vm_nic_count: int = 0
    vm_nic_public_ip_count: int = 0
    default_outbound_access: Optional[bool] = None

    @property
    def is_flagged(self) -> bool:
        return self.outcome == Outcome.FLAGGED

    def to_dict(self) -> dict:
        data = asdict(self)
        data['policy_version'] = self.policy_version.value
        data['outcome'] = self.outcome.value
        data['address_prefixes'] = list(self.address_prefixes)
        data['default_route_next_hops'] = list(self.default_route_next_hops)
        return data


def default_route_next_hops(subnet: Subnet, topology: TopologyModel) -> Tuple[NextHopType, ...]:
    """Distinct next-hop types of the subnet's 0.0.0.0/0 routes, in route order

    A route table normally carries at most one default route, but nothing
    stops an operator from adding several, so every one is reported.
    """
    if not subnet.route_table_id:
        return ()
    route_table = topology.route_table(subnet.route_table_id)
    hops = []
    for route in route_table.default_routes():
        if route.next_hop_type not in hops:
            hops.append(route.next_hop_type)
    return tuple(hops)


def _pool_membership(lb, subnet: Subnet, topology: TopologyModel):
    """Backend pools of ``lb`` with a member in ``subnet``, and unresolved members that could be in it

    Members that cannot belong to the subnet, such as scale set instances of
    another cluster, are ignored even when they are missing from the snapshot.
    """
    pools_here = set()
    unresolved = []
    for pool in lb.backend_pools:
        for member_id in pool.member_ip_configuration_ids:
            try:
                member_subnet = topology.pool_member_subnet_id(member_id)
            except EgressEvaluationError:
                if topology.member_may_be_in_subnet(member_id, subnet):
                    unresolved.append((normalize_resource_id(pool.id), member_id))
                continue
            if same_resource(member_subnet, subnet.id):
                pools_here.add(normalize_resource_id(pool.id))
    return pools_here, unresolved


class EgressPolicy:
    """Interface of a versioned egress classification rule set"""

    version = None
    description = ''

    def __repr__(self):
        return f"{type(self).__name__}(version={self.version.value!r})"

    def evaluate(self, subnet: Subnet, topology: TopologyModel) -> Verdict:
        raise NotImplementedError

    def _verdict(self, subnet, topology, outcome, reason, **flags) -> Verdict:
        vnet = topology.virtual_network
        return Verdict(
            vnet_id=vnet.id,
            vnet_name=vnet.name,
            subnet_id=subnet.id,
            subnet_name=subnet.name,
            address_prefixes=tuple(subnet.address_prefixes),
            policy_version=self.version,
            outcome=outcome,
            reason=reason,
            default_outbound_access=subnet.default_outbound_access,
            **flags
        )

    def _not_applicable(self, subnet, topology) -> Verdict:
        return self._verdict(
            subnet, topology, Outcome.NOT_APPLICABLE, REASON_NO_WORKLOADS,
            has_udr=bool(subnet.route_table_id),
            has_nat_gateway=bool(subnet.nat_gateway_id),
        )

    def _own_nat_gateway(self, subnet, topology) -> bool:
        if not subnet.nat_gateway_id:
            return False
        topology.nat_gateway(subnet.nat_gateway_id)
        return True


class LegacyPolicy(EgressPolicy):
    """v1: VNet-wide NAT Gateway / load balancer presence, subnet-level UDR

    A NAT Gateway on a sibling subnet exempts every subnet of the VNet and the
    next hop of a 0.0.0.0/0 route is not considered. Kept as-is so historical
    results can be reproduced.
    """

    version = PolicyVersion.LEGACY
    description = 'VNet-level NAT Gateway and load balancer presence, any default route is risky'

    def evaluate(self, subnet, topology):
        vm_nics = topology.vm_attached_interfaces(subnet)
        if not vm_nics:
            return self._not_applicable(subnet, topology)

        self._own_nat_gateway(subnet, topology)
        hops = default_route_next_hops(subnet, topology)
        has_udr = bool(subnet.route_table_id)
        vnet_has_nat = any(sibling.nat_gateway_id for sibling in topology.subnets)
        vnet_has_lb = self._vnet_has_lb_membership(topology)

        if not has_udr and not vnet_has_nat and not vnet_has_lb:
            outcome, reason = Outcome.FLAGGED, REASON_NO_EGRESS
        elif has_udr and hops:
            outcome, reason = Outcome.FLAGGED, REASON_RISKY_UDR
        else:
            outcome = Outcome.NOT_FLAGGED
            if has_udr:
                reason = 'route table without default route'
            elif vnet_has_nat:
                reason = 'NAT Gateway in VNet'
            else:
                reason = 'load balancer backend in VNet'

        return self._verdict(
            subnet, topology, outcome, reason,
            has_udr=has_udr,
            has_internet_default_route=NextHopType.INTERNET in hops,
            has_appliance_or_gateway_default_route=any(hop in EXPLICIT_NEXT_HOPS for hop in hops),
            has_nat_gateway=vnet_has_nat,
            has_lb_outbound_rule=vnet_has_lb,
            has_nic_public_ip=any(nic.has_public_ip for nic in vm_nics),
            has_vm_attached_nic=True,
            default_route_next_hops=tuple(hop.value for hop in hops),
            vm_nic_count=len(vm_nics),
            vm_nic_public_ip_count=sum(1 for nic in vm_nics if nic.has_public_ip),
        )

    def _vnet_has_lb_membership(self, topology) -> bool:
        """Any backend pool of any LB in the VNet's resource group and location holding a VNet NIC"""
        vnet = topology.virtual_network
        vnet_nic_ids = topology.vnet_interface_ids()
        for lb in topology.load_balancers_in(vnet.resource_group, vnet.location):
            for pool in lb.backend_pools:
                for member_id in pool.member_ip_configuration_ids:
                    if not is_nic_ip_configuration(parse_resource_id(member_id)):
                        continue
                    if normalize_resource_id(parent_resource_id(member_id)) in vnet_nic_ids:
                        return True
        return False


class _SubnetScopedPolicy(EgressPolicy):
    """Shared classification for the subnet-granular policies (v2, v2.2)"""

    def evaluate(self, subnet, topology):
        vm_nics = topology.vm_attached_interfaces(subnet)
        if not vm_nics:
            return self._not_applicable(subnet, topology)

        has_nat = self._own_nat_gateway(subnet, topology)
        public_ip_nics = [nic for nic in vm_nics if nic.has_public_ip]
        has_pip = bool(public_ip_nics)
        has_lb, unresolved = self._load_balancer_egress(subnet, topology)

        hops = default_route_next_hops(subnet, topology)
        has_internet_route = NextHopType.INTERNET in hops
        has_appliance_route = any(hop in EXPLICIT_NEXT_HOPS for hop in hops)

        direct_egress = has_nat or has_lb or has_pip
        has_explicit_egress = direct_egress or self._route_counts_as_egress(hops)

        if has_internet_route and not direct_egress:
            outcome, reason = Outcome.FLAGGED, REASON_RISKY_UDR_INTERNET
        elif not has_explicit_egress:
            outcome, reason = Outcome.FLAGGED, REASON_NO_EXPLICIT_EGRESS
        else:
            outcome = Outcome.NOT_FLAGGED
            reason = self._egress_mechanisms(has_nat, has_lb, has_pip, hops)

        # An unresolved pool member may be the missing outbound path
        if outcome == Outcome.FLAGGED and unresolved:
            raise UnresolvableReferenceError('backend pool member', unresolved[0])

        return self._verdict(
            subnet, topology, outcome, reason,
            has_udr=bool(subnet.route_table_id),
            has_internet_default_route=has_internet_route,
            has_appliance_or_gateway_default_route=has_appliance_route,
            has_nat_gateway=has_nat,
            has_lb_outbound_rule=has_lb,
            has_nic_public_ip=has_pip,
            has_vm_attached_nic=True,
            default_route_next_hops=tuple(hop.value for hop in hops),
            vm_nic_count=len(vm_nics),
            vm_nic_public_ip_count=len(public_ip_nics),
        )

    def _load_balancer_egress(self, subnet, topology) -> Tuple[bool, List[str]]:
        raise NotImplementedError

    def _route_counts_as_egress(self, hops) -> bool:
        raise NotImplementedError

    def _egress_mechanisms(self, has_nat, has_lb, has_pip, hops) -> str:
        mechanisms = []
        if has_nat:
            mechanisms.append('NAT Gateway')
        if has_lb:
            mechanisms.append(self.lb_mechanism)
        if has_pip:
            mechanisms.append('NIC public IP')
        for hop in hops:
            if hop != NextHopType.INTERNET and self._route_counts_as_egress((hop,)):
                mechanisms.append(f'UDR 0.0.0.0/0 via {hop.value}')
        return ', '.join(mechanisms)


class TransitionalPolicy(_SubnetScopedPolicy):
    """v2: subnet-level checks, any backend pool membership counts as load balancer egress"""

    version = PolicyVersion.TRANSITIONAL
    description = 'Subnet-level NAT Gateway, NIC public IP and load balancer backend membership'
    lb_mechanism = 'load balancer backend pool'

    def _load_balancer_egress(self, subnet, topology):
        unresolved = []
        found = False
        for lb in topology.load_balancers:
            pools_here, lb_unresolved = _pool_membership(lb, subnet, topology)
            found = found or bool(pools_here)
            unresolved.extend(member_id for _pool, member_id in lb_unresolved)
        return found, unresolved

    def _route_counts_as_egress(self, hops):
        return any(hop != NextHopType.INTERNET for hop in hops)


class RefinedPolicy(_SubnetScopedPolicy):
    """v2.2: Standard load balancer outbound rules only, next-hop aware UDR

    The provider's defaultOutboundAccess flag is copied onto the verdict but
    never changes the outcome.
    """

    version = PolicyVersion.REFINED
    description = 'Subnet/NIC-level NAT Gateway, Standard LB outbound rule, NIC public IP, next-hop aware UDR'
    lb_mechanism = 'load balancer outbound rule'

    def _load_balancer_egress(self, subnet, topology):
        unresolved = []
        found = False
        for lb in topology.load_balancers:
            if not lb.is_standard or not lb.outbound_rules:
                continue
            outbound_pools = lb.outbound_pool_ids()
            pools_here, lb_unresolved = _pool_membership(lb, subnet, topology)
            if pools_here & outbound_pools:
                found = True
            unresolved.extend(member_id for pool_id, member_id in lb_unresolved if pool_id in outbound_pools)
        return found, unresolved

    def _route_counts_as_egress(self, hops):
        return any(hop in EXPLICIT_NEXT_HOPS for hop in hops)


POLICIES = {
    PolicyVersion.LEGACY: LegacyPolicy,
    PolicyVersion.TRANSITIONAL: TransitionalPolicy,
    PolicyVersion.REFINED: RefinedPolicy,
}

_ALIASES = {
    'legacy': PolicyVersion.LEGACY,
    'transitional': PolicyVersion.TRANSITIONAL,
    'refined': PolicyVersion.REFINED,
}


def available_policies() -> List[str]:
    return [version.value for version in POLICIES]


def describe_policies() -> str:
    """One line per policy version, for command-line help"""
    return '\n'.join(f"  {version.value:<6}{policy.description}" for version, policy in POLICIES.items())


def get_policy(version: Union[str, PolicyVersion]) -> EgressPolicy:
    """Instantiate the policy for a version string such as 'v1' or 'v2.2'"""
    if isinstance(version, PolicyVersion):
        return POLICIES[version]()
    key = str(version).strip().lower()
    if key in _ALIASES:
        return POLICIES[_ALIASES[key]]()
    for candidate in POLICIES:
        if candidate.value == key:
            return POLICIES[candidate]()
    raise ValueError(f"Unknown policy version {version!r}; choose from {', '.join(available_policies())}")
