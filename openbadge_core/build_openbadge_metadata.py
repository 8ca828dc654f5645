import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, List, Any, Tuple, Union

from openbadge_core.constants import (
    BACKEND_URL,
    ISSUERS_PATH,
    ACHIEVEMENTS_PATH,
    CREDENTIAL_CONTEXT,
    CREDENTIAL_TYPE,
    PROOF_TYPE,
    PROOF_CRYPTOSUITE,
    PROOF_PURPOSE,
    VERIFICATION_KEY_TYPE,
)

logger = logging.getLogger(__name__)


def _compact(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    """Keeps only the pairs whose value is present, preserving order."""
    return {key: value for key, value in pairs if value is not None}


@dataclass(frozen=True)
class Profile:
    """Issuer (or recipient) profile."""
    id: str
    name: str
    url: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    type: str = field(default="Profile", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return _compact([
            ("id", self.id),
            ("type", self.type),
            ("name", self.name),
            ("url", self.url),
            ("email", self.email),
            ("description", self.description),
            ("image", self.image),
        ])


@dataclass(frozen=True)
class Criteria:
    narrative: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"narrative": self.narrative}


@dataclass(frozen=True)
class Achievement:
    """The badge definition being claimed."""
    id: str
    name: str
    description: str
    criteria: Criteria
    achievement_type: Optional[str] = None
    image: Optional[str] = None
    tags: Optional[Tuple[str, ...]] = None
    alignment: Optional[Tuple[Any, ...]] = None
    type: str = field(default="Achievement", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return _compact([
            ("id", self.id),
            ("type", self.type),
            ("name", self.name),
            ("description", self.description),
            ("criteria", self.criteria.to_dict()),
            ("achievementType", self.achievement_type),
            ("image", self.image),
            ("tags", list(self.tags) if self.tags is not None else None),
            ("alignment", list(self.alignment) if self.alignment is not None else None),
        ])


@dataclass(frozen=True)
class AchievementSubject:
    achievement: Achievement
    # mailto: URI of the recipient; None for anonymous credentials
    id: Optional[str] = None
    type: str = field(default="AchievementSubject", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return _compact([
            ("id", self.id),
            ("type", self.type),
            ("achievement", self.achievement.to_dict()),
        ])


@dataclass(frozen=True)
class DataIntegrityProof:
    verification_method: str
    proof_value: str
    created: str
    type: str = field(default=PROOF_TYPE, init=False)
    cryptosuite: str = field(default=PROOF_CRYPTOSUITE, init=False)
    proof_purpose: str = field(default=PROOF_PURPOSE, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "cryptosuite": self.cryptosuite,
            "verificationMethod": self.verification_method,
            "proofPurpose": self.proof_purpose,
            "proofValue": self.proof_value,
            "created": self.created,
        }


@dataclass(frozen=True)
class OpenBadgeCredential:
    """
    An Open Badge 3.0 credential. Unsigned until ``proof`` is set by the signer.

    ``to_dict()`` produces the JSON wire format; absent optional members are
    omitted rather than emitted as null.
    """
    id: str
    issuer: Profile
    valid_from: str
    credential_subject: AchievementSubject
    name: Optional[str] = None
    proof: Optional[DataIntegrityProof] = None
    context: Tuple[str, ...] = field(default=tuple(CREDENTIAL_CONTEXT), init=False)
    type: Tuple[str, ...] = field(default=tuple(CREDENTIAL_TYPE), init=False)

    def to_dict(self) -> Dict[str, Any]:
        return _compact([
            ("@context", list(self.context)),
            ("id", self.id),
            ("type", list(self.type)),
            ("issuer", self.issuer.to_dict()),
            ("validFrom", self.valid_from),
            ("credentialSubject", self.credential_subject.to_dict()),
            ("name", self.name),
            ("proof", self.proof.to_dict() if self.proof is not None else None),
        ])

_FRACTION = re.compile(r"(?<=:\d\d)\.(\d+)")


def format_timestamp(moment: Union[datetime, str]) -> str:
    """
    Format a moment in time as an ISO 8601 UTC timestamp with millisecond precision.

    Args:
        moment (Union[datetime, str]): A datetime (naive values are taken as UTC) or an
            ISO 8601 string.

    Returns:
        str: Timestamp such as "2024-01-01T00:00:00.000Z"

    Raises:
        ValueError: If a string is not valid ISO 8601.
    """
    if isinstance(moment, str):
        text = moment.strip().replace("Z", "+00:00")
        # fromisoformat() before 3.11 only takes 3 or 6 fractional digits
        text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
        moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def issuer_id_for(organization_id: Any, base_url: str = None) -> str:
    """Stable, dereferenceable issuer identifier for an organization."""
    return f"{(base_url or BACKEND_URL).rstrip('/')}{ISSUERS_PATH}/{organization_id}"


def achievement_id_for(badge_id: Any, base_url: str = None) -> str:
    """Stable, dereferenceable achievement identifier for a badge."""
    return f"{(base_url or BACKEND_URL).rstrip('/')}{ACHIEVEMENTS_PATH}/{badge_id}"


def _get(record: Any, key: str) -> Any:
    # records arrive as dicts from the API layer or as row objects from the ORM
    if record is None:
        return None
    if isinstance(record, Mapping):
        return record.get(key)
    return getattr(record, key, None)


def _present(value: Any) -> Any:
    """Return value unless it is None or an empty string/collection."""
    if value is None:
        return None
    if isinstance(value, (str, list, tuple, dict)) and len(value) == 0:
        return None
    return value


def parse_skills(skills: Optional[str]) -> Optional[Tuple[str, ...]]:
    """
    Split a comma separated skills string into trimmed tags.

    Returns None (so that ``tags`` is omitted) when no non-empty entry remains.
    """
    if not skills:
        return None
    tags = tuple(skill.strip() for skill in skills.split(",") if skill.strip())
    return tags or None


def parse_alignments(alignments: Union[str, List[Any], None]) -> Optional[Tuple[Any, ...]]:
    """
    Decode the JSON encoded alignment list stored on a badge.

    Args:
        alignments (Union[str, List, None]): JSON array text, or an already decoded list.

    Returns:
        Optional[Tuple]: The alignment entries, or None when there are none to include.

    Raises:
        ValueError: If the text is not valid JSON or does not decode to a JSON array.
    """
    if alignments is None:
        return None
    if isinstance(alignments, str):
        if not alignments.strip():
            return None
        try:
            alignments = json.loads(alignments)
        except json.JSONDecodeError as e:
            raise ValueError(f"alignments is not a valid JSON string: {e}") from e
    if not isinstance(alignments, (list, tuple)):
        raise ValueError(f"alignments must be a JSON array, got {type(alignments).__name__}")
    return tuple(alignments) or None


def build_issuer_profile(organization: Any, base_url: str = None) -> Profile:
    return Profile(
        id=issuer_id_for(_get(organization, "id"), base_url),
        name=_get(organization, "name"),
        url=_present(_get(organization, "url")),
        email=_present(_get(organization, "email")),
        description=_present(_get(organization, "description")),
        image=_present(_get(organization, "image")),
    )


def build_achievement(badge: Any, base_url: str = None) -> Achievement:
    return Achievement(
        id=achievement_id_for(_get(badge, "id"), base_url),
        name=_get(badge, "name"),
        description=_get(badge, "description") or "",
        criteria=Criteria(narrative=_get(badge, "earningCriteria") or ""),
        achievement_type=_present(_get(badge, "achievementType")),
        image=_present(_get(badge, "imageData")),
        tags=parse_skills(_get(badge, "skills")),
        alignment=parse_alignments(_get(badge, "alignments")),
    )


def build_credential(
    credential_id: str,
    badge: Any,
    user: Any,
    organization: Any,
    earned_at: Union[datetime, str],
    base_url: str = None
) -> OpenBadgeCredential:
    """
    Builds an unsigned Open Badge 3.0 credential from badge, user and organization records.

    The function is pure: identifiers are derived from ``base_url`` (defaults to the
    BACKEND_URL setting) and the record ids, so every caller addresses the same issuer
    and achievement with the same URIs.

    Args:
        credential_id (str): Unique URI for this credential instance (e.g. 'urn:uuid:1234').
        badge: Badge record with 'id', 'name', 'description', 'earningCriteria' and the optional
            'achievementType', 'imageData', 'skills' (comma separated) and 'alignments' (JSON text).
        user: Recipient record; its optional 'email' binds the credential to the recipient.
        organization: Issuer record with 'id', 'name' and the optional 'url', 'email',
            'description', 'image'.
        earned_at (Union[datetime, str]): When the badge was earned; becomes ``validFrom``.
        base_url (str, optional): Overrides BACKEND_URL for identifier construction.

    Returns:
        OpenBadgeCredential: The credential with no proof attached.

    Raises:
        ValueError: If the badge alignments cannot be decoded.

    Example:
        >>> credential = build_credential(
        ...     "urn:uuid:xyz",
        ...     badge={"id": "b1", "name": "Python Master", "description": "...",
        ...            "earningCriteria": "Complete course"},
        ...     user={"email": "a@b.com"},
        ...     organization={"id": "org1", "name": "Acme"},
        ...     earned_at="2024-01-01T00:00:00Z",
        ... )
        >>> credential.credential_subject.id
        'mailto:a@b.com'
    """
    email = _present(_get(user, "email"))
    credential_subject = AchievementSubject(
        achievement=build_achievement(badge, base_url),
        id=f"mailto:{email}" if email else None,
    )

    credential = OpenBadgeCredential(
        id=credential_id,
        issuer=build_issuer_profile(organization, base_url),
        valid_from=format_timestamp(earned_at),
        credential_subject=credential_subject,
        name=_present(_get(badge, "name")),
    )
    logger.debug(f"Built credential {credential_id} for achievement {credential_subject.achievement.id}")
    return credential


def credential_to_dict(credential: Union[OpenBadgeCredential, Mapping]) -> Dict[str, Any]:
    """Returns a fresh JSON-compatible dict for a credential object or mapping."""
    if isinstance(credential, OpenBadgeCredential):
        return credential.to_dict()
    if isinstance(credential, Mapping):
        return json.loads(json.dumps(dict(credential)))
    raise TypeError(f"Expected an OpenBadgeCredential or a mapping, got {type(credential).__name__}")


def credential_to_json(credential: Union[OpenBadgeCredential, Mapping]) -> str:
    """Compact JSON text of a credential, used when embedding it into images."""
    return json.dumps(credential_to_dict(credential), separators=(',', ':'), ensure_ascii=False)


def build_verification_method(
    key_id: str,
    public_key_multibase: str,
    controller: str = None,
    key_type: str = VERIFICATION_KEY_TYPE
) -> Dict[str, Any]:
    """
    Builds a publishable verification method document for an issuer key.

    Args:
        key_id (str): Identifier of the verification method, e.g. "{issuer_id}#key-1"
        public_key_multibase (str): Multibase encoded public key
        controller (str): The entity that controls this verification method;
            defaults to ``key_id`` without its fragment
        key_type (str): Type of verification method

    Returns:
        Dict: Verification method object
    """
    if isinstance(public_key_multibase, bytes):
        public_key_multibase = public_key_multibase.decode('utf-8')
    return {
        "id": key_id,
        "type": key_type,
        "controller": controller or key_id.split("#")[0],
        "publicKeyMultibase": public_key_multibase
    }
