#!/usr/bin/env python3
"""
patron_gate - membership-gated content for static sites.

Runs the OAuth relay, or classifies a saved provider identity document offline.
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep patron_gate imports lazy (inside functions) so `--help` does not pull in FastAPI.
#


def classify_identity_file(path: str, *, campaign_id: str, creator_id: str) -> Dict[str, Any]:
    """
    Classify a saved `/api/oauth2/v2/identity` response.

    Args:
        path: JSON file with the provider's identity document ("-" reads stdin)
        campaign_id: Campaign to look up memberships for
        creator_id: User id treated as the creator

    Returns:
        The normalized identity, in the relay's `/identity` wire shape
    """
    from patron_gate.membership import classify_membership

    if path == "-":
        document = json.load(sys.stdin)
    else:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    if not isinstance(document, dict):
        raise ValueError("Identity document must be a JSON object")
    return classify_membership(document, campaign_id=campaign_id, creator_id=creator_id).to_wire()


def main():
    parser = argparse.ArgumentParser(
        description="patron_gate OAuth relay and membership tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the relay (reads PATREON_CLIENT_ID / PATREON_CLIENT_SECRET / ... from the environment)
  python main.py --serve-relay --port 8787

  # Classify a saved identity response
  python main.py --classify-identity identity.json --campaign-id 123 --creator-id 456
        """,
    )
    parser.add_argument("--serve-relay", action="store_true", help="Run the OAuth relay HTTP server")
    parser.add_argument("--host", default="0.0.0.0", help="Relay bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8787, help="Relay listen port (default: 8787)")
    parser.add_argument(
        "--classify-identity",
        metavar="FILE",
        help="Classify a saved provider identity document and print the normalized result ('-' for stdin)",
    )
    parser.add_argument(
        "--campaign-id",
        default=os.getenv("PATREON_CAMPAIGN_ID", ""),
        help="Campaign id for --classify-identity (default: $PATREON_CAMPAIGN_ID)",
    )
    parser.add_argument(
        "--creator-id",
        default=os.getenv("PATREON_CREATOR_ID", ""),
        help="Creator user id for --classify-identity (default: $PATREON_CREATOR_ID)",
    )

    args = parser.parse_args()

    try:
        if args.serve_relay:
            from patron_gate.relay.app import run as run_relay

            run_relay(host=args.host, port=args.port)
            return

        if args.classify_identity:
            result = classify_identity_file(
                args.classify_identity, campaign_id=args.campaign_id, creator_id=args.creator_id
            )
            print(json.dumps(result, indent=2, sort_keys=False))
            return

        parser.print_help()

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
