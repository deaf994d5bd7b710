#!/usr/bin/env python3
"""
Tests for report output (CSV, JSON, HTML and terminal summary)
"""

import csv
import json
import os
import sys
import tempfile
import unittest
from unittest.mock import patch

# Add the script directory to Python path
sys.path.insert(0, os.path.dirname(__file__))

import egress_report
from egress_engine import classify, compare_policies
from egress_fixtures import SUBSCRIPTION_ID, lab_topology, make_nic, make_route_table, make_subnet, make_topology


def broken_topology():
    nic = make_nic('nic-broken', 'snet-broken')
    return make_topology([make_subnet('snet-broken', [nic], route_table=make_route_table('rt-gone', 'Internet'))],
                         nics=[nic], name='broken-vnet')


class TestReportOutput(unittest.TestCase):
    """Test report files written from verdicts"""

    def setUp(self):
        self.verdicts, _ = classify(lab_topology(), 'v2.2', include_not_applicable=True)
        _, self.errors = classify(broken_topology(), 'v2.2')
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)

    def test_summarize(self):
        summary = egress_report.summarize(self.verdicts, self.errors)

        self.assertEqual(summary['evaluated'], 7)
        self.assertEqual(summary['flagged'], 2)
        self.assertEqual(summary['not_flagged'], 4)
        self.assertEqual(summary['not_applicable'], 1)
        self.assertEqual(summary['errors'], 1)
        self.assertEqual(summary['reasons'], {'no explicit egress': 1, 'risky UDR to Internet': 1})
        self.assertEqual(summary['vnets_affected'], 1)
        self.assertEqual(summary['error_kinds'], {'UnresolvableReference': 1})

    def test_export_csv(self):
        path = os.path.join(self.temp_dir.name, 'report.csv')
        errors_path = egress_report.export_csv(path, self.verdicts, self.errors)

        with open(path, newline='', encoding='utf-8') as f:
            rows = list(csv.reader(f))
        self.assertEqual(rows[0], egress_report.CSV_HEADER)
        self.assertEqual(len(rows), 8)
        self.assertEqual(rows[1][0], SUBSCRIPTION_ID)
        self.assertEqual(rows[1][3], 'snet-default')
        self.assertEqual(rows[1][6], 'Flagged')

        self.assertEqual(errors_path, os.path.join(self.temp_dir.name, 'report-errors.csv'))
        with open(errors_path, newline='', encoding='utf-8') as f:
            error_rows = list(csv.reader(f))
        self.assertEqual(error_rows[0], egress_report.ERROR_CSV_HEADER)
        self.assertEqual(error_rows[1][2], 'snet-broken')

    def test_export_csv_without_errors(self):
        path = os.path.join(self.temp_dir.name, 'report.csv')
        self.assertIsNone(egress_report.export_csv(path, self.verdicts))
        self.assertFalse(os.path.exists(os.path.join(self.temp_dir.name, 'report-errors.csv')))

    def test_export_json(self):
        path = os.path.join(self.temp_dir.name, 'report.json')
        egress_report.export_json(path, self.verdicts, self.errors, metadata={'policy_version': 'v2.2'})

        with open(path, encoding='utf-8') as f:
            data = json.load(f)
        self.assertEqual(data['metadata']['policy_version'], 'v2.2')
        self.assertEqual(len(data['verdicts']), 7)
        self.assertEqual(data['verdicts'][0]['outcome'], 'Flagged')
        self.assertEqual(data['verdicts'][0]['reason'], 'no explicit egress')
        self.assertEqual(data['errors'][0]['kind'], 'UnresolvableReference')
        self.assertEqual(data['summary']['vnets'][0]['name'], 'lab-vnet')

    def test_render_html_with_template(self):
        divergences = compare_policies([lab_topology()], 'v1', 'v2.2')
        html = egress_report.render_html(self.verdicts, self.errors, generated_date='today',
                                         policy_version='v2.2', divergences=divergences)

        self.assertIn('Azure Default Egress Assessment Report', html)
        self.assertIn('snet-udr-internet', html)
        self.assertIn('risky UDR to Internet', html)
        self.assertIn('Subnets Not Evaluated', html)
        self.assertIn('Policy Comparison', html)

    @patch('builtins.print')
    def test_render_html_fallback_template(self, mock_print):
        html = egress_report.render_html(self.verdicts, template_dir=self.temp_dir.name, policy_version='v2.2')
        self.assertIn('snet-default', html)
        self.assertIn('policy v2.2', html)
        self.assertTrue(mock_print.called)

    def test_write_html(self):
        path = os.path.join(self.temp_dir.name, 'report.html')
        egress_report.write_html(path, self.verdicts, self.errors, policy_version='v2.2')
        self.assertTrue(os.path.getsize(path) > 0)

    @patch('builtins.print')
    def test_print_summary_and_comparison(self, mock_print):
        summary = egress_report.print_summary(self.verdicts, self.errors, 'v2.2')
        self.assertEqual(summary['flagged'], 2)

        divergences = compare_policies([lab_topology()], 'v1', 'v2.2')
        egress_report.print_policy_comparison(divergences, 'v1', 'v2.2')
        printed = '\n'.join(str(call.args[0]) for call in mock_print.call_args_list if call.args)
        self.assertIn('snet-default', printed)
        self.assertIn('classified differently', printed)


if __name__ == '__main__':
    unittest.main(verbosity=2)
