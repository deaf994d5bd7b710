#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Report output for egress verdicts: terminal summary, CSV, JSON and HTML.

Author: Aviatrix Systems, Inc.
Copyright © 2025 Aviatrix Systems, Inc. All rights reserved.
"""

import csv
import json
import os
from collections import Counter, OrderedDict

from jinja2 import Environment, FileSystemLoader, Template, select_autoescape

from console import Colors
from egress_errors import ResourceIdError
from egress_policies import Outcome
from resource_ids import extract_resource_group, parse_resource_id

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), 'templates')
TEMPLATE_NAME = 'report_template.html'

CSV_HEADER = [
    'Subscription ID', 'VNet Name', 'Resource Group', 'Subnet Name', 'Address Prefixes',
    'Policy', 'Outcome', 'Reason',
    'Has Route Table', 'Default Route To Internet', 'Default Route To Appliance/Gateway',
    'Has NAT Gateway', 'Has LB Outbound Rule', 'Has NIC Public IP',
    'VM NICs Count', 'VM NICs With Public IP', 'Default Route Next Hops', 'Default Outbound Access',
]

ERROR_CSV_HEADER = ['Subscription ID', 'VNet ID', 'Subnet Name', 'Subnet ID', 'Error Kind', 'Reference ID', 'Message']

# Used when templates/report_template.html is not shipped alongside the module
FALLBACK_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>Azure Default Egress Assessment Report</title></head>
<body>
<h1>Azure Default Egress Assessment Report</h1>
<p>Generated {{ generated_date }} with policy {{ policy_version }}</p>
<p>Subnets evaluated: {{ summary.evaluated }}, flagged: {{ summary.flagged }}, errors: {{ summary.errors }}</p>
<table>
<tr><th>VNet</th><th>Subnet</th><th>Outcome</th><th>Reason</th></tr>
{% for verdict in verdicts %}<tr><td>{{ verdict.vnet_name }}</td><td>{{ verdict.subnet_name }}</td>
<td>{{ verdict.outcome.value }}</td><td>{{ verdict.reason }}</td></tr>
{% endfor %}</table>
</body>
</html>
"""


def subscription_of(resource_id):
    try:
        return parse_resource_id(resource_id).subscription_id
    except ResourceIdError:
        return ''


def verdict_row(verdict):
    return [
        subscription_of(verdict.subnet_id),
        verdict.vnet_name,
        extract_resource_group(verdict.vnet_id),
        verdict.subnet_name,
        ', '.join(verdict.address_prefixes),
        verdict.policy_version.value,
        verdict.outcome.value,
        verdict.reason,
        verdict.has_udr,
        verdict.has_internet_default_route,
        verdict.has_appliance_or_gateway_default_route,
        verdict.has_nat_gateway,
        verdict.has_lb_outbound_rule,
        verdict.has_nic_public_ip,
        verdict.vm_nic_count,
        verdict.vm_nic_public_ip_count,
        ', '.join(verdict.default_route_next_hops),
        '' if verdict.default_outbound_access is None else verdict.default_outbound_access,
    ]


def error_row(error):
    return [
        subscription_of(error.subnet_id),
        error.vnet_id,
        error.subnet_name,
        error.subnet_id,
        error.kind.value,
        error.reference_id or '',
        error.message,
    ]


def summarize(verdicts, errors):
    """Counts by outcome and reason, plus per-VNet flagged totals"""
    outcomes = Counter(verdict.outcome for verdict in verdicts)
    reasons = Counter(verdict.reason for verdict in verdicts if verdict.is_flagged)
    vnets = OrderedDict()
    for verdict in verdicts:
        vnet = vnets.setdefault(verdict.vnet_id, {'name': verdict.vnet_name, 'subnets': 0, 'flagged': 0})
        vnet['subnets'] += 1
        if verdict.is_flagged:
            vnet['flagged'] += 1
    return {
        'evaluated': len(verdicts),
        'flagged': outcomes[Outcome.FLAGGED],
        'not_flagged': outcomes[Outcome.NOT_FLAGGED],
        'not_applicable': outcomes[Outcome.NOT_APPLICABLE],
        'errors': len(errors),
        'reasons': dict(reasons),
        'vnets': vnets,
        'vnets_affected': sum(1 for vnet in vnets.values() if vnet['flagged']),
        'error_kinds': dict(Counter(error.kind.value for error in errors)),
    }


def export_csv(path, verdicts, errors=()):
    """Write one CSV row per verdict; errors go to a sibling ``-errors.csv`` file"""
    with open(path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for verdict in verdicts:
            writer.writerow(verdict_row(verdict))

    errors_path = None
    if errors:
        root, ext = os.path.splitext(path)
        errors_path = f"{root}-errors{ext or '.csv'}"
        with open(errors_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(ERROR_CSV_HEADER)
            for error in errors:
                writer.writerow(error_row(error))
    return errors_path


def export_json(path, verdicts, errors=(), metadata=None):
    export_data = {
        'metadata': dict(metadata or {}),
        'summary': _json_summary(summarize(verdicts, errors)),
        'verdicts': [verdict.to_dict() for verdict in verdicts],
        'errors': [error.to_dict() for error in errors],
    }
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(export_data, f, indent=2)


def _json_summary(summary):
    data = dict(summary)
    data['vnets'] = [dict(vnet, id=vnet_id) for vnet_id, vnet in summary['vnets'].items()]
    return data


def _load_template(template_dir):
    if os.path.exists(os.path.join(template_dir, TEMPLATE_NAME)):
        env = Environment(loader=FileSystemLoader(template_dir), autoescape=select_autoescape(['html']))
        return env.get_template(TEMPLATE_NAME)
    print(f"{Colors.YELLOW}! Template not found in {template_dir}, using fallback HTML{Colors.ENDC}")
    return Template(FALLBACK_TEMPLATE, autoescape=True)


def render_html(verdicts, errors=(), generated_date='', policy_version='', divergences=(),
                template_dir=TEMPLATE_DIR):
    template = _load_template(template_dir)
    return template.render(
        generated_date=generated_date,
        policy_version=policy_version,
        summary=summarize(verdicts, errors),
        verdicts=verdicts,
        errors=errors,
        divergences=divergences,
    )


def write_html(path, verdicts, errors=(), **context):
    html_content = render_html(verdicts, errors, **context)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(html_content)


def _outcome_color(verdict):
    if verdict.outcome == Outcome.FLAGGED:
        return Colors.YELLOW
    if verdict.outcome == Outcome.NOT_FLAGGED:
        return Colors.GREEN
    return Colors.CYAN


def print_verdicts(verdicts):
    for verdict in verdicts:
        color = _outcome_color(verdict)
        print(f"    Subnet: {verdict.vnet_name}/{verdict.subnet_name} - "
              f"{color}{verdict.outcome.value}{Colors.ENDC} ({verdict.reason})")


def print_summary(verdicts, errors, policy_version):
    """Print a summary of findings in the terminal"""
    summary = summarize(verdicts, errors)
    print(f"\n{Colors.HEADER}==================== ASSESSMENT SUMMARY ===================={Colors.ENDC}")
    print(f"Policy: {policy_version}")
    print(f"VNets with subnets evaluated: {len(summary['vnets'])}")
    print(f"  Affected VNets: {summary['vnets_affected']}")
    print(f"Subnets with VM workloads: {summary['evaluated'] - summary['not_applicable']}")
    print(f"  {Colors.GREEN}Explicit egress: {summary['not_flagged']}{Colors.ENDC}")
    print(f"  {Colors.YELLOW}Flagged: {summary['flagged']}{Colors.ENDC}")
    for reason, count in sorted(summary['reasons'].items()):
        print(f"    - {reason}: {count}")
    if summary['not_applicable']:
        print(f"Subnets without VM workloads: {summary['not_applicable']}")
    if errors:
        print(f"  {Colors.RED}Could not be evaluated: {summary['errors']}{Colors.ENDC}")
        for error in errors:
            print(f"    - {error.subnet_name}: [{error.kind.value}] {error.message}")
    return summary


def print_policy_comparison(divergences, baseline_version, candidate_version):
    print(f"\n{Colors.HEADER}============ POLICY COMPARISON ({baseline_version} vs {candidate_version}) ============{Colors.ENDC}")
    if not divergences:
        print(f"{Colors.GREEN}✓ Both policies agree on every subnet{Colors.ENDC}")
        return
    print(f"{Colors.YELLOW}! {len(divergences)} subnet(s) classified differently{Colors.ENDC}")
    for divergence in divergences:
        before = _describe(divergence.baseline)
        after = _describe(divergence.candidate)
        print(f"  {divergence.vnet_name}/{divergence.subnet_name}: {before} -> {after}")


def _describe(verdict):
    if verdict is None:
        return 'Unknown (evaluation error)'
    if verdict.is_flagged:
        return f"{verdict.outcome.value} ({verdict.reason})"
    return verdict.outcome.value
