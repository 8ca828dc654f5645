# openbadge_core/constants.py
# constants.py contains the constants used by the credential core: OpenBadges 3.0 context URIs,
# proof parameters, baking keywords, and the environment driven issuer configuration.
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
dotenv_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path)

# Base of every issuer and achievement identifier, e.g. "https://badges.example.edu"
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:3000").rstrip("/")
ISSUERS_PATH = "/api/issuers"
ACHIEVEMENTS_PATH = "/api/achievements"

# Base64 Ed25519 private key of the deployment's issuing organization (optional)
CRYPTO_PK = os.getenv("CRYPTO_PK", None)

CREDENTIAL_CONTEXT = [
    "https://www.w3.org/ns/credentials/v2",
    "https://purl.imsglobal.org/spec/ob/v3p0/context-3.0.3.json"
]
CREDENTIAL_TYPE = ["VerifiableCredential", "OpenBadgeCredential"]

PROOF_TYPE = "DataIntegrityProof"
PROOF_CRYPTOSUITE = "eddsa-rdfc-2022"
PROOF_PURPOSE = "assertionMethod"

ED25519_KEY_LENGTH = 32
# multicodec prefix for an ed25519-pub key
ED25519_MULTICODEC_PREFIX = b"\xed\x01"
VERIFICATION_KEY_TYPE = "Ed25519VerificationKey2020"

# Baking
PNG_KEYWORD = "openbadges"
OPENBADGES_NS = "https://purl.imsglobal.org/ob/v3p0"
DEFAULT_SVG_SIZE = 512
