"""Interpretation of decoded ledger message content.

Producers are loose about field names, so every logical field is resolved
through ``FIELD_SYNONYMS``: the first key in the tuple holding a non-empty
value wins. Classification and type-specific details are tables too, so adding
a synonym or an event type does not touch the resolution code.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from ledger_indexer.db.models.indexed_records import ProviderType, RecordType

FIELD_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "event_type": ("eventType", "type", "action"),
    "content_location_ref": ("cid", "ipfsCid"),
    "content_url": ("ipfsUrl",),
    "content_hash": ("hash", "recordHash"),
    "title": ("title", "name"),
    "record_date": ("date",),
    "facility": ("facility", "hospital"),
    "patient": ("patientId", "patient"),
    "patient_account_id": ("patientAccountId", "patientHederaId"),
    "patient_did": ("patientDid",),
    "provider": ("providerId", "doctor", "lab", "clinic"),
    "provider_name": ("providerName", "doctorName", "labName"),
    "provider_account_id": ("providerAccountId", "providerHederaId"),
    "provider_did": ("providerDid", "issuerDid"),
    "original_record_ref": ("recordId",),
    "nft_token_id": ("nftTokenId", "tokenId"),
    "nft_serial": ("nftSerial", "serial"),
    "status": ("status",),
}

EVENT_RECORD_TYPES: Dict[str, RecordType] = {
    "lab_result": RecordType.LAB_RESULT,
    "lab-result": RecordType.LAB_RESULT,
    "prescription": RecordType.PRESCRIPTION,
    "diagnosis": RecordType.DIAGNOSIS,
    "vaccination": RecordType.VACCINATION,
    "surgery": RecordType.SURGERY,
    "medical_record": RecordType.OTHER,
    "record_created": RecordType.OTHER,
    "record_updated": RecordType.OTHER,
}

# First match wins.
PROVIDER_TYPE_KEYS: Tuple[Tuple[ProviderType, Tuple[str, ...]], ...] = (
    (ProviderType.LAB, ("lab", "labName")),
    (ProviderType.PHARMACY, ("pharmacy",)),
    (ProviderType.HOSPITAL, ("hospital",)),
    (ProviderType.CLINIC, ("clinic",)),
    (ProviderType.DOCTOR, ("doctor", "doctorName")),
)


def lookup(content: Mapping[str, Any], path: str) -> Any:
    """Value at a dotted ``path`` in nested mappings, or None."""
    value: Any = content
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def _present(value: Any) -> bool:
    return value is not None and value != "" and value != [] and value != {}


def first_of(content: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        value = lookup(content, key)
        if _present(value):
            return value
    return None


def resolve(content: Mapping[str, Any], name: str) -> Any:
    return first_of(content, FIELD_SYNONYMS[name])


def as_ref(value: Any) -> Optional[str]:
    """Coerce a reference-ish value (id string, number, or object) to text."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, Mapping):
        for key in ("id", "_id", "accountId", "name"):
            if _present(value.get(key)):
                return str(value[key])
    return None


def medication_names(medications: Any) -> List[str]:
    if not isinstance(medications, list):
        return []
    names = []
    for medication in medications:
        if isinstance(medication, Mapping):
            medication = medication.get("name") or medication.get("medication")
        if _present(medication):
            names.append(str(medication))
    return names


@dataclass(frozen=True)
class DetailRule:
    """Type-specific metadata block.

    Applies when the event type is one of ``event_types`` or any ``triggers``
    key is present. Each output key is filled from a synonym tuple or computed
    by a callable over the content.
    """

    event_types: FrozenSet[str]
    triggers: Tuple[str, ...]
    fields: Mapping[str, Any]

    def applies(self, content: Mapping[str, Any], event_type: Optional[str]) -> bool:
        if event_type in self.event_types:
            return True
        return any(_present(lookup(content, key)) for key in self.triggers)


DETAIL_RULES: Tuple[DetailRule, ...] = (
    DetailRule(
        event_types=frozenset({"lab_result", "lab-result"}),
        triggers=("testType",),
        fields={"testType": ("testType",), "labName": ("labName", "lab.name")},
    ),
    DetailRule(
        event_types=frozenset({"prescription"}),
        triggers=("medications",),
        fields={
            "medicationNames": lambda content: medication_names(content.get("medications")),
            "prescribingDoctor": ("doctor", "doctorName"),
        },
    ),
    DetailRule(
        event_types=frozenset({"vaccination"}),
        triggers=("vaccine",),
        fields={
            "vaccineName": ("vaccine", "vaccineName"),
            "batchNumber": ("batchNumber",),
            "manufacturer": ("manufacturer",),
        },
    ),
    DetailRule(
        event_types=frozenset({"surgery"}),
        triggers=("procedure",),
        fields={
            "procedureName": ("procedure", "procedureName"),
            "surgeonName": ("surgeon", "surgeonName"),
        },
    ),
)


def map_event_to_record_type(event_type: Optional[str]) -> RecordType:
    return EVENT_RECORD_TYPES.get(event_type or "", RecordType.OTHER)


def detect_provider_type(content: Mapping[str, Any]) -> ProviderType:
    for provider_type, keys in PROVIDER_TYPE_KEYS:
        if first_of(content, keys) is not None:
            return provider_type
    return ProviderType.OTHER


def type_details(content: Mapping[str, Any], event_type: Optional[str]) -> Dict[str, Any]:
    tags = content.get("tags")
    details: Dict[str, Any] = {"tags": list(tags) if isinstance(tags, list) else []}

    for rule in DETAIL_RULES:
        if not rule.applies(content, event_type):
            continue
        for key, source in rule.fields.items():
            if key in details:
                continue
            value = source(content) if callable(source) else first_of(content, source)
            if value is not None:
                details[key] = value
    return details


def parse_record_date(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(frozen=True)
class Envelope:
    """A decoded message tagged with the record type it describes.

    ``kind`` is the tag; ``RecordType.OTHER`` is the variant for event types
    the indexer does not know.
    """

    kind: RecordType
    event_type: Optional[str]
    content: Mapping[str, Any] = field(repr=False)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_known(self) -> bool:
        return self.kind is not RecordType.OTHER

    def get(self, name: str) -> Any:
        return resolve(self.content, name)

    def ref(self, name: str) -> Optional[str]:
        return as_ref(self.get(name))


def parse_envelope(content: Mapping[str, Any]) -> Envelope:
    event_type = resolve(content, "event_type")
    if event_type is not None and not isinstance(event_type, str):
        event_type = str(event_type)
    return Envelope(
        kind=map_event_to_record_type(event_type),
        event_type=event_type,
        content=content,
        details=type_details(content, event_type),
    )
