#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Azure resource ID helpers
=========================

Azure resource IDs are path strings of the form::

    /subscriptions/{subscription}/resourceGroups/{group}
        /providers/{namespace}/{type}/{name}[/{child type}/{child name}...]

Their casing is not stable across API calls, so every comparison in this tool
goes through ``normalize_resource_id``.

Author: Aviatrix Systems, Inc.
Copyright © 2025 Aviatrix Systems, Inc. All rights reserved.
"""

import re
from typing import NamedTuple, Optional, Tuple

from egress_errors import ResourceIdError

_RESOURCE_GROUP_RE = re.compile(r'/resourceGroups/([^/]+)', re.IGNORECASE)


class ResourceId(NamedTuple):
    """Parsed form of an Azure resource ID"""
    subscription_id: str
    resource_group: str
    namespace: str
    types: Tuple[str, ...]
    names: Tuple[str, ...]

    @property
    def name(self) -> str:
        return self.names[-1]

    @property
    def resource_type(self) -> str:
        """Fully qualified type, e.g. Microsoft.Network/networkInterfaces/ipConfigurations"""
        return '/'.join((self.namespace,) + self.types)

    @property
    def parent(self) -> Optional['ResourceId']:
        if len(self.types) == 1:
            return None
        return self._replace(types=self.types[:-1], names=self.names[:-1])

    def is_type(self, resource_type: str) -> bool:
        return self.resource_type.lower() == resource_type.lower()

    def __str__(self) -> str:
        segments = [
            '', 'subscriptions', self.subscription_id,
            'resourceGroups', self.resource_group,
            'providers', self.namespace,
        ]
        for type_name, name in zip(self.types, self.names):
            segments.extend([type_name, name])
        return '/'.join(segments)


def parse_resource_id(resource_id: str) -> ResourceId:
    """Parse a fully-qualified resource ID, raising ResourceIdError if it does not match"""
    if not resource_id or not isinstance(resource_id, str):
        raise ResourceIdError(resource_id, 'empty resource ID')

    segments = resource_id.strip().strip('/').split('/')
    if len(segments) < 8 or any(not segment for segment in segments):
        raise ResourceIdError(resource_id, 'too few path segments')

    expected = ('subscriptions', 'resourcegroups', 'providers')
    for position, keyword in zip((0, 2, 4), expected):
        if segments[position].lower() != keyword:
            raise ResourceIdError(resource_id, f"expected '{keyword}' at segment {position + 1}")

    type_name_pairs = segments[6:]
    if len(type_name_pairs) % 2:
        raise ResourceIdError(resource_id, 'resource type without a name')

    return ResourceId(
        subscription_id=segments[1],
        resource_group=segments[3],
        namespace=segments[5],
        types=tuple(type_name_pairs[0::2]),
        names=tuple(type_name_pairs[1::2]),
    )


def normalize_resource_id(resource_id: Optional[str]) -> str:
    """Canonical comparison key for a resource ID"""
    if not resource_id:
        return ''
    return resource_id.strip().rstrip('/').lower()


def same_resource(first: Optional[str], second: Optional[str]) -> bool:
    return bool(first) and normalize_resource_id(first) == normalize_resource_id(second)


def extract_resource_group(resource_id: str) -> str:
    """Extract resource group name from Azure resource ID"""
    match = _RESOURCE_GROUP_RE.search(resource_id or '')
    if match:
        return match.group(1)
    return ""


def resource_name(resource_id: str) -> str:
    return resource_id.rstrip('/').split('/')[-1] if resource_id else ''


def parent_resource_id(resource_id: str) -> str:
    """ID of the resource owning a child resource (e.g. the NIC of an IP configuration)"""
    parent = parse_resource_id(resource_id).parent
    if parent is None:
        raise ResourceIdError(resource_id, 'not a child resource')
    return str(parent)
