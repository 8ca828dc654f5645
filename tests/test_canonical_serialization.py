#!/usr/bin/env python3
"""
Test script pinning the canonical serialization that both signing and verification depend on
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from openbadge_core.build_openbadge_metadata import build_credential
from openbadge_core.crypto_utils import canonicalize_credential


def test_sorted_compact_utf8():
    credential = {"type": ["VerifiableCredential"], "id": "urn:uuid:1", "name": "Café ✓", "b": {"z": 1, "a": None}}
    assert canonicalize_credential(credential) == (
        '{"b":{"a":null,"z":1},"id":"urn:uuid:1","name":"Café ✓","type":["VerifiableCredential"]}'
    ).encode("utf-8")


def test_proof_is_stripped():
    credential = {"id": "urn:uuid:1", "proof": {"proofValue": "abc"}}
    assert canonicalize_credential(credential) == b'{"id":"urn:uuid:1"}'
    # the input keeps its proof
    assert credential["proof"] == {"proofValue": "abc"}


def test_key_order_does_not_matter():
    assert canonicalize_credential({"a": 1, "b": [1, 2]}) == canonicalize_credential({"b": [1, 2], "a": 1})


def test_dataclass_and_dict_forms_agree(badge, user, organization):
    credential = build_credential("urn:uuid:c", badge, user, organization, "2024-01-01T00:00:00Z")
    assert canonicalize_credential(credential) == canonicalize_credential(credential.to_dict())


def test_concrete_bytes():
    credential = build_credential(
        "urn:uuid:xyz",
        {"id": "b1", "name": "Python Master", "description": "...", "earningCriteria": "Complete course"},
        {"email": "a@b.com"},
        {"id": "org1", "name": "Acme"},
        "2024-01-01T00:00:00Z",
        base_url="https://badges.example",
    )
    expected = (
        '{"@context":["https://www.w3.org/ns/credentials/v2",'
        '"https://purl.imsglobal.org/spec/ob/v3p0/context-3.0.3.json"],'
        '"credentialSubject":{"achievement":{"criteria":{"narrative":"Complete course"},'
        '"description":"...","id":"https://badges.example/api/achievements/b1",'
        '"name":"Python Master","type":"Achievement"},"id":"mailto:a@b.com","type":"AchievementSubject"},'
        '"id":"urn:uuid:xyz",'
        '"issuer":{"id":"https://badges.example/api/issuers/org1","name":"Acme","type":"Profile"},'
        '"name":"Python Master",'
        '"type":["VerifiableCredential","OpenBadgeCredential"],'
        '"validFrom":"2024-01-01T00:00:00.000Z"}'
    )
    assert canonicalize_credential(credential) == expected.encode("utf-8")
