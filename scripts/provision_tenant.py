"""Provision or upgrade tenant schemas from the command line.

Usage:
    python -m scripts.provision_tenant --slug acme-corp --org-id org-1 [--dry-run]
    python -m scripts.provision_tenant --all [--dry-run]
"""

import argparse
import asyncio
import logging
import sys

from tenantflow.provisioning.provisioner import ProvisionOptions, ProvisionResult
from tenantflow.runtime import TenancyRuntime, build_runtime


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Provision tenant schemas")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--slug", help="Organization slug")
    target.add_argument("--all", action="store_true", help="Every active organization")
    parser.add_argument("--org-id", help="Organization id (looked up by slug if omitted)")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without applying")
    return parser.parse_args(argv)


def print_result(result: ProvisionResult) -> None:
    status = "OK" if result.success else "FAILED"
    print(f"[{status}] {result.schema_name} ({result.summary.get('strategy')}, {result.duration_ms}ms)")
    for change in result.changes:
        print(f"  + {change}")
    for error in result.errors:
        print(f"  ! {error}")


async def run(args: argparse.Namespace, runtime: TenancyRuntime) -> int:
    options = ProvisionOptions(dry_run=args.dry_run)

    if args.all:
        targets = [(org.slug, org.id) for org in await runtime.directory.list_active()]
    else:
        org_id = args.org_id
        if org_id is None:
            org = await runtime.directory.get_by_slug(args.slug)
            if org is None:
                print(f"Organization {args.slug!r} not found", file=sys.stderr)
                return 2
            org_id = org.id
        targets = [(args.slug, org_id)]

    failures = 0
    for slug, org_id in targets:
        outcome = await runtime.provisioning.provision_tenant(slug, org_id, options)
        if outcome.result is not None:
            print_result(outcome.result)
            failures += 0 if outcome.result.success else 1

    print(f"{len(targets) - failures}/{len(targets)} schemas converged")
    return 1 if failures else 0


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    runtime = build_runtime()
    try:
        return await run(args, runtime)
    finally:
        await runtime.aclose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    sys.exit(asyncio.run(main()))
