#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Terminal output helpers shared by the collector, reports and CLI.

Author: Aviatrix Systems, Inc.
Copyright © 2025 Aviatrix Systems, Inc. All rights reserved.
"""

import traceback


# ANSI color codes for terminal output
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'
    UNDERLINE = '\033[4m'


def print_failure(message, verbose=False):
    """Print a red failure line, with the active traceback when verbose"""
    print(f"{Colors.RED}✗ {message}{Colors.ENDC}")
    if verbose:
        traceback.print_exc()
