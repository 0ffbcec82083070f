#!/usr/bin/env python3
"""
Operator console for the SiteMind agent API.

    agent_console.py command "Close ticket #45, customer got a replacement"
    agent_console.py approvals
    agent_console.py decide apr_... approve --approver ops@sitemind.com
    agent_console.py logs --status FAILED
"""

import argparse
import json
import os
import sys

import requests

API_URL = os.getenv("SITEMIND_API_URL", "http://127.0.0.1:8000")


def _print(body):
    print(json.dumps(body, indent=2))


def _call(method, path, **kwargs):
    try:
        response = requests.request(method, f"{API_URL}{path}", timeout=90, **kwargs)
    except requests.RequestException as e:
        print(f"❌ Could not reach {API_URL}: {e}")
        sys.exit(1)
    if response.status_code >= 400:
        print(f"❌ HTTP {response.status_code}")
        _print(response.json())
        sys.exit(1)
    return response.json()


def command_cmd(args):
    headers = {"X-Session-Id": args.session} if args.session else {}
    body = _call("POST", "/agent/command", json={"command": args.text}, headers=headers)
    envelope = body["envelope"]
    print(f"[{envelope['status']}] {envelope.get('action')}: {envelope['message']}")
    if envelope["status"] == "pending_approval":
        approval = envelope["approval"]
        print(f"   approval {approval['approvalId']} expires {approval['expiresAt']}")
    elif envelope["status"] == "error":
        error = envelope["error"]
        print(f"   {error['code']}: {error['details']}")
        if error.get("suggestion"):
            print(f"   {error['suggestion']}")
    if args.verbose:
        _print(body)


def approvals_cmd(args):
    pending = _call("GET", "/agent/approvals")["pending_requests"]
    if not pending:
        print("No pending approvals.")
    for request in pending:
        print(f"{request['approval_id']}  {request['action']}  {json.dumps(request['params'])}"
              f"  expires {request['expires_at']}")


def decide_cmd(args):
    body = _call("POST", f"/agent/approvals/{args.approval_id}/decision",
                 json={"decision": args.decision, "approver": args.approver})
    print(f"Approval is now {body['approval']['state']}")
    if body.get("envelope"):
        _print(body["envelope"])


def logs_cmd(args):
    params = {"limit": args.limit}
    if args.status:
        params["status"] = args.status
    for log in _call("GET", "/agent/logs", params=params)["logs"]:
        print(f"{log['created_at']}  {log['status']:<8} {log.get('action') or '-':<22} {log['task']}")
        if args.verbose:
            for step in log["steps"]:
                print(f"    [{step['status']}] {step['step']}")


def main():
    parser = argparse.ArgumentParser(description="SiteMind agent operator console")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("command", help="Send a natural-language admin command")
    p.add_argument("text")
    p.add_argument("--session", help="Session id for conversation context")
    p.set_defaults(func=command_cmd)

    p = sub.add_parser("approvals", help="List pending approvals")
    p.set_defaults(func=approvals_cmd)

    p = sub.add_parser("decide", help="Approve or deny a pending request")
    p.add_argument("approval_id")
    p.add_argument("decision", choices=["approve", "deny"])
    p.add_argument("--approver")
    p.set_defaults(func=decide_cmd)

    p = sub.add_parser("logs", help="Show recent audit logs")
    p.add_argument("--limit", type=int, default=20)
    p.add_argument("--status", choices=["PENDING", "SUCCESS", "FAILED"])
    p.set_defaults(func=logs_cmd)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
