#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Exceptions raised while evaluating subnet egress.

Author: Aviatrix Systems, Inc.
Copyright © 2025 Aviatrix Systems, Inc. All rights reserved.
"""


class EgressEvaluationError(Exception):
    """Base class for errors that invalidate a single subnet's verdict"""


class ResourceIdError(EgressEvaluationError, ValueError):
    """A resource ID does not follow the /subscriptions/.../providers/... grammar"""

    def __init__(self, resource_id, detail):
        self.resource_id = resource_id
        self.detail = detail
        super().__init__(f"Invalid resource ID {resource_id!r}: {detail}")


class UnresolvableReferenceError(EgressEvaluationError, LookupError):
    """A referenced resource is not present in the topology snapshot"""

    def __init__(self, reference_kind, reference_id):
        self.reference_kind = reference_kind
        self.reference_id = reference_id
        super().__init__(f"{reference_kind} {reference_id} could not be resolved")
