#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Classification engine
=====================

Applies one egress policy to every subnet of a topology snapshot and returns
the verdicts together with the per-subnet errors met along the way. A failure
on one subnet is recorded and never stops its siblings.

Author: Aviatrix Systems, Inc.
Copyright © 2025 Aviatrix Systems, Inc. All rights reserved.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, NamedTuple, Optional, Union

from egress_errors import EgressEvaluationError, ResourceIdError, UnresolvableReferenceError
from egress_policies import EgressPolicy, Outcome, PolicyVersion, Verdict, get_policy
from egress_topology import Subnet, TopologyModel
from resource_ids import normalize_resource_id


class ErrorKind(str, Enum):
    UNRESOLVABLE_REFERENCE = 'UnresolvableReference'
    AMBIGUOUS_POLICY_INPUT = 'AmbiguousPolicyInput'
    INVALID_RESOURCE_ID = 'InvalidResourceId'


@dataclass(frozen=True)
class SubnetError:
    vnet_id: str
    subnet_id: str
    subnet_name: str
    kind: ErrorKind
    message: str
    reference_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'vnet_id': self.vnet_id,
            'subnet_id': self.subnet_id,
            'subnet_name': self.subnet_name,
            'kind': self.kind.value,
            'message': self.message,
            'reference_id': self.reference_id,
        }


class ClassificationResult(NamedTuple):
    verdicts: List[Verdict]
    errors: List[SubnetError]


class PolicyDivergence(NamedTuple):
    subnet_id: str
    subnet_name: str
    vnet_name: str
    baseline: Optional[Verdict]
    candidate: Optional[Verdict]


def _resolve_policy(policy: Union[EgressPolicy, PolicyVersion, str]) -> EgressPolicy:
    if isinstance(policy, EgressPolicy):
        return policy
    return get_policy(policy)


def _subnet_error(topology, subnet, error) -> SubnetError:
    if isinstance(error, UnresolvableReferenceError):
        kind, reference = ErrorKind.UNRESOLVABLE_REFERENCE, error.reference_id
    elif isinstance(error, ResourceIdError):
        kind, reference = ErrorKind.INVALID_RESOURCE_ID, error.resource_id
    else:
        kind, reference = ErrorKind.UNRESOLVABLE_REFERENCE, None
    return SubnetError(
        vnet_id=topology.virtual_network.id,
        subnet_id=subnet.id,
        subnet_name=subnet.name,
        kind=kind,
        message=str(error),
        reference_id=reference,
    )


def _ambiguity_error(topology, subnet: Subnet, verdict: Verdict) -> Optional[SubnetError]:
    """Several default routes with different next hops; the verdict is kept"""
    if len(verdict.default_route_next_hops) < 2:
        return None
    return SubnetError(
        vnet_id=topology.virtual_network.id,
        subnet_id=subnet.id,
        subnet_name=subnet.name,
        kind=ErrorKind.AMBIGUOUS_POLICY_INPUT,
        message=(f"Route table has conflicting 0.0.0.0/0 routes "
                 f"(next hops: {', '.join(verdict.default_route_next_hops)})"),
        reference_id=subnet.route_table_id,
    )


def classify(topology: TopologyModel, policy, include_not_applicable: bool = False) -> ClassificationResult:
    """Classify every subnet of one VNet snapshot with the given policy

    Returns verdicts for the subnets that are not NotApplicable (all of them
    with ``include_not_applicable``) and the errors, both in subnet order.
    Subnets whose verdict could not be produced appear only in the errors.
    """
    policy = _resolve_policy(policy)
    verdicts = []
    errors = []

    for subnet in topology.subnets:
        try:
            if not topology.vm_attached_interfaces(subnet):
                if include_not_applicable:
                    verdicts.append(policy.evaluate(subnet, topology))
                continue
            verdict = policy.evaluate(subnet, topology)
        except EgressEvaluationError as e:
            errors.append(_subnet_error(topology, subnet, e))
            continue

        ambiguity = _ambiguity_error(topology, subnet, verdict)
        if ambiguity:
            errors.append(ambiguity)
        if verdict.outcome != Outcome.NOT_APPLICABLE or include_not_applicable:
            verdicts.append(verdict)

    return ClassificationResult(verdicts, errors)


def _vnet_subnet_key(item):
    return normalize_resource_id(item.vnet_id), normalize_resource_id(item.subnet_id)


def classify_all(topologies: Iterable[TopologyModel], policy, max_workers: int = 1,
                 include_not_applicable: bool = False) -> ClassificationResult:
    """Classify many VNets, optionally on a thread pool

    Results are merged and ordered by VNet ID then subnet ID so the output does
    not depend on completion order.
    """
    policy = _resolve_policy(policy)
    topologies = list(topologies)

    if max_workers and max_workers > 1 and len(topologies) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(
                lambda topology: classify(topology, policy, include_not_applicable), topologies))
    else:
        results = [classify(topology, policy, include_not_applicable) for topology in topologies]

    verdicts = [verdict for result in results for verdict in result.verdicts]
    errors = [error for result in results for error in result.errors]
    verdicts.sort(key=_vnet_subnet_key)
    errors.sort(key=_vnet_subnet_key)
    return ClassificationResult(verdicts, errors)


def compare_policies(topologies: Iterable[TopologyModel], baseline, candidate) -> List[PolicyDivergence]:
    """Subnets whose outcome differs between two policies

    A subnet that errored under one policy and not the other counts as a
    divergence with the missing side set to None.
    """
    topologies = list(topologies)
    baseline_result = classify_all(topologies, baseline, include_not_applicable=True)
    candidate_result = classify_all(topologies, candidate, include_not_applicable=True)

    baseline_by_subnet = {normalize_resource_id(v.subnet_id): v for v in baseline_result.verdicts}
    candidate_by_subnet = {normalize_resource_id(v.subnet_id): v for v in candidate_result.verdicts}

    divergences = []
    for topology in sorted(topologies, key=lambda t: normalize_resource_id(t.virtual_network.id)):
        for subnet in sorted(topology.subnets, key=lambda s: normalize_resource_id(s.id)):
            key = normalize_resource_id(subnet.id)
            before = baseline_by_subnet.get(key)
            after = candidate_by_subnet.get(key)
            before_outcome = before.outcome if before else None
            after_outcome = after.outcome if after else None
            if before_outcome != after_outcome:
                divergences.append(PolicyDivergence(
                    subnet_id=subnet.id,
                    subnet_name=subnet.name,
                    vnet_name=topology.virtual_network.name,
                    baseline=before,
                    candidate=after,
                ))
    return divergences
