#!/usr/bin/env python3
"""
AD Group Resolver - scheduled task entry point

Resolves directory groups to their member identities (or looks up single
identities) for the department's notification and cleanup scripts.

Requirements:
    - Python 3.8+
    - ldap3, pydantic-settings: pip install .

Configuration:
    Set AD_RESOLVER_* environment variables, at least:
    - AD_RESOLVER_SERVER_HOST: Domain controller hostname
    - AD_RESOLVER_BASE_DN: Search base DN
    - AD_RESOLVER_BIND_DN / AD_RESOLVER_BIND_PASSWORD: Service account
    - AD_RESOLVER_LOG_DIR: Directory for run logs (optional)

Usage:
    python resolve-members.py members "Win11-Upgrade-Wave1" --attribute mail > wave1.jsonl
    python resolve-members.py lookup jsmith --domain-suffix dept.example.edu

Scheduling:
    Windows (Task Scheduler):
        Create a scheduled task running this script with the service account

    Linux (cron):
        0 6 * * * cd /opt/ad-resolver && python3 resolve-members.py members "Lab-PCs" > /var/lib/ad-resolver/lab-pcs.jsonl
"""

from ad_resolver.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
