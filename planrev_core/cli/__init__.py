"""
planrev CLI: planrevctl command-line interface.

Usage:
    python -m planrev_core.cli.planrevctl order plan.yaml
    python -m planrev_core.cli.planrevctl validate plan.yaml budget_detail --content-file draft.txt
    python -m planrev_core.cli.planrevctl plan plan.yaml mandate --cycle cycle.json
    python -m planrev_core.cli.planrevctl match plan_2025.yaml plan_2026.yaml
"""

from planrev_core.cli.planrevctl import main
