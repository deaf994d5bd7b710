#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Azure Default Egress Assessment Tool
===================================

This tool helps assess the impact of Azure's upcoming change to default internet egress
by identifying subnets whose VM workloads rely on the implicit default outbound access
instead of an explicit egress path (NAT Gateway, load balancer outbound rule, instance
public IP or a UDR to a virtual appliance / gateway).

Classification is performed by a selectable, versioned policy so results from older
rule sets can be reproduced and compared.

Author: Aviatrix Systems, Inc.
Copyright © 2025 Aviatrix Systems, Inc. All rights reserved.
"""

import os
import sys
import argparse
import datetime
import time

# Try to import Azure libraries, provide helpful error if not installed
try:
    from azure.identity import AzureCliCredential, DefaultAzureCredential
    from azure.mgmt.network import NetworkManagementClient
    from azure.mgmt.subscription import SubscriptionClient
    from azure.core.exceptions import ClientAuthenticationError, HttpResponseError
except ImportError:
    print("Error: Required Azure libraries not found.")
    print("Please install required packages using: pip install azure-identity azure-mgmt-network azure-mgmt-subscription")
    sys.exit(1)

from azure_collector import AzureTopologyCollector
from console import Colors, print_failure
from egress_engine import classify_all, compare_policies
from egress_policies import available_policies, describe_policies, get_policy
import egress_report

TOOL_VERSION = '2.2.0'


class AzureEgressAssessment:
    """Main class for Azure Default Egress Assessment Tool"""

    def __init__(self, args):
        """Initialize the assessment tool with command-line arguments"""
        self.args = args
        self.credential = None
        self.subscription_client = None
        self.subscriptions = []
        self.topologies = []
        self.verdicts = []
        self.errors = []
        self.divergences = []
        self.start_time = datetime.datetime.now()
        self.report_filename = os.path.join(
            getattr(args, 'output_dir', None) or '.',
            f"azure-egress-assessment-{self.start_time.strftime('%Y%m%d-%H%M%S')}")

        self.policy = get_policy(args.policy)
        self.compare_policy = get_policy(args.compare_policy) if args.compare_policy else None

        # Progress tracking
        self.total_resources = 0
        self.processed_resources = 0
        self.last_progress_update = time.time()

    def authenticate(self):
        """Authenticate using Azure credentials"""
        print(f"{Colors.HEADER}Authenticating with Azure...{Colors.ENDC}")
        try:
            # First try Azure CLI credentials as they're most likely to be used
            self.credential = AzureCliCredential()
            self.subscription_client = SubscriptionClient(self.credential)
            next(self.subscription_client.subscriptions.list())
            print(f"{Colors.GREEN}✓ Authentication successful using Azure CLI credentials{Colors.ENDC}")
        except (ClientAuthenticationError, StopIteration):
            print(f"{Colors.YELLOW}! Azure CLI authentication failed, trying DefaultAzureCredential...{Colors.ENDC}")
            try:
                self.credential = DefaultAzureCredential()
                self.subscription_client = SubscriptionClient(self.credential)
                next(self.subscription_client.subscriptions.list())
                print(f"{Colors.GREEN}✓ Authentication successful using DefaultAzureCredential{Colors.ENDC}")
            except Exception as e:
                print_failure(f"Authentication failed: {str(e)}", self.args.verbose)
                print("Please ensure you are logged in with 'az login' or have appropriate environment variables set.")
                sys.exit(1)

    def get_subscriptions(self):
        """Get a list of accessible Azure subscriptions"""
        print(f"{Colors.HEADER}Retrieving accessible subscriptions...{Colors.ENDC}")

        try:
            subscription_list = list(self.subscription_client.subscriptions.list())
        except HttpResponseError as e:
            print_failure(f"Failed to retrieve subscriptions: {str(e)}", self.args.verbose)
            sys.exit(1)

        if not subscription_list:
            print(f"{Colors.YELLOW}! No subscriptions found. Please check your permissions.{Colors.ENDC}")
            sys.exit(1)

        # Filter subscriptions based on command line args if provided
        if self.args.subscription_id:
            subscription_ids = [sub_id.strip().lower() for sub_id in self.args.subscription_id.split(',')]
            self.subscriptions = [sub for sub in subscription_list if sub.subscription_id.lower() in subscription_ids]
            if not self.subscriptions:
                print(f"{Colors.RED}✗ No matching subscriptions found for ID(s): {self.args.subscription_id}{Colors.ENDC}")
                sys.exit(1)
        else:
            self.subscriptions = subscription_list

        print(f"{Colors.GREEN}✓ Found {len(self.subscriptions)} accessible subscription(s){Colors.ENDC}")

    def update_progress(self):
        """Update the progress indicator"""
        self.processed_resources += 1
        current_time = time.time()

        # Only update progress every 0.5 seconds to avoid screen flicker
        if current_time - self.last_progress_update >= 0.5:
            if self.total_resources > 0:
                percent = (self.processed_resources / self.total_resources) * 100
                sys.stdout.write(f"\r{Colors.CYAN}Progress: {self.processed_resources}/{self.total_resources} subscriptions collected ({percent:.1f}%){Colors.ENDC}")
                sys.stdout.flush()
                self.last_progress_update = current_time

    def scan_subscription(self, subscription):
        """Collect topology snapshots for every VNet in a subscription"""
        sub_id = subscription.subscription_id
        sub_name = subscription.display_name
        print(f"\n{Colors.HEADER}Scanning subscription: {sub_name} ({sub_id}){Colors.ENDC}")

        try:
            network_client = NetworkManagementClient(self.credential, sub_id)
            collector = AzureTopologyCollector(network_client, sub_id, verbose=self.args.verbose)
            topologies = collector.collect()

            if not topologies:
                print(f"{Colors.YELLOW}! No VNets found in subscription {sub_name}{Colors.ENDC}")
            else:
                print(f"{Colors.GREEN}✓ Collected {len(topologies)} VNets in subscription {sub_name}{Colors.ENDC}")
            self.topologies.extend(topologies)
        except Exception as e:
            print_failure(f"Error scanning subscription {sub_name}: {str(e)}", self.args.verbose)
        finally:
            self.update_progress()

    def classify(self):
        """Apply the selected policy (and the comparison policy, if any) to all collected VNets"""
        print(f"\n{Colors.HEADER}Classifying subnets with policy {self.policy.version.value}...{Colors.ENDC}")
        self.verdicts, self.errors = classify_all(
            self.topologies, self.policy,
            max_workers=self.args.workers,
            include_not_applicable=True,
        )
        if self.args.verbose:
            egress_report.print_verdicts(self.verdicts)

        if self.compare_policy:
            self.divergences = compare_policies(self.topologies, self.compare_policy, self.policy)

    def run_assessment(self):
        """Run the complete assessment workflow"""
        try:
            self.authenticate()
            self.get_subscriptions()

            self.total_resources = len(self.subscriptions)
            for subscription in self.subscriptions:
                self.scan_subscription(subscription)

            self.classify()
            print(f"\n{Colors.GREEN}✓ Assessment complete!{Colors.ENDC}")

            os.makedirs(os.path.dirname(self.report_filename) or '.', exist_ok=True)
            self.generate_terminal_summary()
            self.generate_html_report()

            if self.args.export_json:
                self.export_json()
            if self.args.export_csv:
                self.export_csv()

        except Exception as e:
            print_failure(f"Assessment failed: {str(e)}", self.args.verbose)
            sys.exit(1)

    def generate_terminal_summary(self):
        """Generate a summary of findings in the terminal"""
        egress_report.print_summary(self.verdicts, self.errors, self.policy.version.value)
        if self.compare_policy:
            egress_report.print_policy_comparison(
                self.divergences, self.compare_policy.version.value, self.policy.version.value)

        print(f"\n{Colors.HEADER}==================== REPORTS ===================={Colors.ENDC}")
        print(f"HTML Report: {Colors.UNDERLINE}{self.report_filename}.html{Colors.ENDC}")
        if self.args.export_json:
            print(f"JSON Export: {Colors.UNDERLINE}{self.report_filename}.json{Colors.ENDC}")
        if self.args.export_csv:
            print(f"CSV Export: {Colors.UNDERLINE}{self.report_filename}.csv{Colors.ENDC}")

    def generate_html_report(self):
        """Generate a detailed HTML report using the template"""
        print(f"\n{Colors.HEADER}Generating HTML report...{Colors.ENDC}")
        try:
            egress_report.write_html(
                f"{self.report_filename}.html", self.verdicts, self.errors,
                generated_date=self.start_time.strftime('%B %d, %Y at %I:%M %p'),
                policy_version=self.policy.version.value,
                divergences=self.divergences,
            )
            print(f"{Colors.GREEN}✓ HTML report generated: {self.report_filename}.html{Colors.ENDC}")
        except (OSError, ValueError) as e:
            print_failure(f"Error generating HTML report: {str(e)}", self.args.verbose)

    def export_json(self):
        """Export verdicts and errors to JSON file"""
        print(f"{Colors.HEADER}Exporting JSON data...{Colors.ENDC}")
        try:
            egress_report.export_json(
                f"{self.report_filename}.json", self.verdicts, self.errors,
                metadata={
                    'generated_at': self.start_time.isoformat(),
                    'tool_version': TOOL_VERSION,
                    'policy_version': self.policy.version.value,
                    'subscriptions': [sub.subscription_id for sub in self.subscriptions],
                },
            )
            print(f"{Colors.GREEN}✓ JSON data exported: {self.report_filename}.json{Colors.ENDC}")
        except (OSError, TypeError) as e:
            print_failure(f"Error exporting JSON data: {str(e)}", self.args.verbose)

    def export_csv(self):
        """Export verdicts to CSV file, errors to a separate CSV file"""
        print(f"{Colors.HEADER}Exporting CSV data...{Colors.ENDC}")
        try:
            errors_path = egress_report.export_csv(f"{self.report_filename}.csv", self.verdicts, self.errors)
            print(f"{Colors.GREEN}✓ CSV data exported: {self.report_filename}.csv{Colors.ENDC}")
            if errors_path:
                print(f"{Colors.YELLOW}! Evaluation errors exported: {errors_path}{Colors.ENDC}")
        except OSError as e:
            print_failure(f"Error exporting CSV data: {str(e)}", self.args.verbose)


def parse_arguments(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="Azure Default Egress Assessment Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Policies:
{describe_policies()}

Examples:
  python azure_egress_assessment.py                      # Scan all subscriptions
  python azure_egress_assessment.py --subscription-id SUB1,SUB2  # Scan specific subscriptions
  python azure_egress_assessment.py --policy v1          # Use the legacy rule set
  python azure_egress_assessment.py --compare-policy v1  # Show subnets where v1 and v2.2 disagree
  python azure_egress_assessment.py --export-json --export-csv    # Export data in JSON and CSV formats
  python azure_egress_assessment.py --verbose            # Show detailed logs
        """
    )

    parser.add_argument('--subscription-id',
                        help='Comma-separated list of subscription IDs to scan')
    parser.add_argument('--policy', default='v2.2', choices=available_policies(),
                        help='Egress classification policy version (default: v2.2)')
    parser.add_argument('--compare-policy', choices=available_policies(),
                        help='Also classify with this policy version and report subnets that differ')
    parser.add_argument('--workers', type=int, default=4,
                        help='Number of VNets classified in parallel (default: 4)')
    parser.add_argument('--output-dir', default='.',
                        help='Directory for generated reports (default: current directory)')
    parser.add_argument('--export-json', action='store_true',
                        help='Export assessment data to JSON file')
    parser.add_argument('--export-csv', action='store_true',
                        help='Export assessment data to CSV file')
    parser.add_argument('--verbose', action='store_true',
                        help='Show detailed logs and error messages')

    return parser.parse_args(argv)


def main():
    """Main entry point"""
    print(f"\n{Colors.BOLD}{Colors.HEADER}Azure Default Egress Assessment Tool{Colors.ENDC}")
    print(f"{Colors.CYAN}Copyright © 2025 Aviatrix Systems, Inc. All rights reserved.{Colors.ENDC}\n")

    args = parse_arguments()
    assessment = AzureEgressAssessment(args)
    assessment.run_assessment()


if __name__ == "__main__":
    main()
