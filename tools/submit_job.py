#!/usr/bin/env python3
# ============================================================================
# CLI GENERATION SUBMISSION TOOL
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Tool - Submit generation jobs over HTTP
# PURPOSE: Exercise a running orchestrator API from the command line
# CREATED: 16 OCT 2026
# ============================================================================
"""
Submit generation jobs to a running orchestrator API.

Usage:
    # Validate first, then queue one resource
    python tools/submit_job.py user-1 ideal-customer-profile

    # Queue several resources as one batch job
    python tools/submit_job.py user-1 ideal-customer-profile pain-points --batch

    # Poll for completion
    python tools/submit_job.py user-1 ideal-customer-profile --poll

Exit code is 0 only if the job was accepted (and, with --poll, completed).
"""

import argparse
import json
import os
import sys
import time
from typing import List, Optional

import httpx

TERMINAL_STATES = ("completed", "failed")


def submit(client: httpx.Client, base_url: str, user_id: str, resource_ids: List[str], batch: bool) -> Optional[str]:
    """Queue a generation (or batch) job; returns the job id or None if rejected."""
    if batch:
        resp = client.post(
            f"{base_url}/api/v1/users/{user_id}/generate-batch",
            json={"resource_ids": resource_ids},
        )
    else:
        resp = client.post(f"{base_url}/api/v1/users/{user_id}/generate/{resource_ids[0]}")

    data = resp.json()
    if resp.status_code == 409:
        validation = data.get("validation", {})
        print(f"Rejected: {data.get('error')}")
        print(f"  missing:         {validation.get('missing_required_ids')}")
        print(f"  suggested order: {validation.get('suggested_order')}")
        return None
    if resp.status_code != 202:
        print(f"ERROR: HTTP {resp.status_code}: {json.dumps(data, default=str)}", file=sys.stderr)
        return None

    reused = " (existing job reused)" if data.get("deduplicated") else ""
    print(f"Queued {data['job_id']} on {data['queue_name']}{reused}")
    return data["job_id"]


def poll_status(client: httpx.Client, base_url: str, job_id: str, timeout: int = 120) -> Optional[dict]:
    """Poll GET /jobs/{job_id} until the job is terminal or timeout elapses."""
    print(f"\nPolling {job_id} (timeout {timeout}s)...")
    start = time.time()

    while time.time() - start < timeout:
        elapsed = int(time.time() - start)
        try:
            resp = client.get(f"{base_url}/api/v1/jobs/{job_id}")
        except httpx.HTTPError as e:
            print(f"  [{elapsed:3d}s] Poll error: {e}")
        else:
            if resp.status_code == 404:
                print(f"  [{elapsed:3d}s] Job not found (purged?)")
                return None
            data = resp.json()
            print(
                f"  [{elapsed:3d}s] status={data['status']} progress={data['progress']}% "
                f"attempt={data['attempts_made']}/{data['max_attempts']}"
            )
            if data["status"] in TERMINAL_STATES and (
                data["status"] == "completed" or data["attempts_made"] >= data["max_attempts"]
            ):
                print("\n--- FINAL RESULT ---")
                print(json.dumps(data, indent=2, default=str))
                return data

        time.sleep(2)

    print(f"\nTimeout after {timeout}s")
    return None


def main():
    parser = argparse.ArgumentParser(
        description="Submit resource generation jobs to the orchestrator API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s user-1 ideal-customer-profile
  %(prog)s user-1 ideal-customer-profile pain-points --batch --poll
        """,
    )
    parser.add_argument("user_id", help="User to generate for")
    parser.add_argument("resource_ids", nargs="+", help="Resource id(s) to generate")
    parser.add_argument("--batch", "-b", action="store_true", help="Submit all ids as one batch job")
    parser.add_argument("--poll", "-p", action="store_true", help="Poll for job completion")
    parser.add_argument(
        "--orchestrator-url", "-u",
        default=os.environ.get("ORCHESTRATOR_URL", "http://localhost:8000"),
        help="Orchestrator base URL",
    )
    parser.add_argument("--timeout", "-t", type=int, default=120, help="Poll timeout in seconds (default: 120)")

    args = parser.parse_args()
    if len(args.resource_ids) > 1 and not args.batch:
        parser.error("pass --batch to submit more than one resource")

    base_url = args.orchestrator_url.rstrip("/")
    with httpx.Client(timeout=10.0) as client:
        try:
            job_id = submit(client, base_url, args.user_id, args.resource_ids, args.batch)
        except httpx.HTTPError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            sys.exit(1)

        if job_id is None:
            sys.exit(1)

        if args.poll:
            result = poll_status(client, base_url, job_id, timeout=args.timeout)
            sys.exit(0 if result and result["status"] == "completed" else 1)


if __name__ == "__main__":
    main()
