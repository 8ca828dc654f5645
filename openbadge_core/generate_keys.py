#!/usr/bin/env python3
"""
Generate an Ed25519 keypair for OpenBadges 3.0 signing.

Run this once per issuing organization and store the keys with the organization record.

Usage:
    python -m openbadge_core.generate_keys [--json] [--issuer-id URL]
"""
import argparse
import json
import logging
import sys

from openbadge_core.crypto_utils import generate_key_pair, build_issuer_verification_method

logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Generate an Ed25519 keypair for OpenBadges 3.0 signing")
    parser.add_argument("--json", action="store_true", help="print the keypair as a JSON object")
    parser.add_argument("--issuer-id", help="also print the verification method document for this issuer URL")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    logger.info("Generating Ed25519 keypair for OpenBadges 3.0")

    keys = generate_key_pair()
    verification_method = None
    if args.issuer_id:
        verification_method = build_issuer_verification_method(args.issuer_id, keys.public_key)

    if args.json:
        output = {"privateKey": keys.private_key, "publicKey": keys.public_key}
        if verification_method:
            output["verificationMethod"] = verification_method
        print(json.dumps(output, indent=2))
        return 0

    print("=" * 60)
    print("PUBLIC KEY (store in organization database record):")
    print("=" * 60)
    print(keys.public_key)
    print()
    print("=" * 60)
    print("PRIVATE KEY (keep secret, e.g. CRYPTO_PK in .env):")
    print("=" * 60)
    print(keys.private_key)
    if verification_method:
        print()
        print("=" * 60)
        print("VERIFICATION METHOD (publish at the issuer URL):")
        print("=" * 60)
        print(json.dumps(verification_method, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
