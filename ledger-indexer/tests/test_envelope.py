import pytest

from ledger_indexer.db.models.indexed_records import ProviderType, RecordType
from ledger_indexer.domain.indexing.envelope import (
    detect_provider_type,
    map_event_to_record_type,
    medication_names,
    parse_envelope,
    resolve,
    type_details,
)


@pytest.mark.parametrize(
    "event_type, expected",
    [
        ("lab_result", RecordType.LAB_RESULT),
        ("lab-result", RecordType.LAB_RESULT),
        ("prescription", RecordType.PRESCRIPTION),
        ("diagnosis", RecordType.DIAGNOSIS),
        ("vaccination", RecordType.VACCINATION),
        ("surgery", RecordType.SURGERY),
        ("medical_record", RecordType.OTHER),
        ("record_updated", RecordType.OTHER),
        ("consent_granted", RecordType.OTHER),
        (None, RecordType.OTHER),
    ],
)
def test_event_type_classification(event_type, expected):
    assert map_event_to_record_type(event_type) is expected


def test_event_type_synonyms_are_tried_in_priority_order():
    content = {"action": "surgery", "type": "prescription"}
    assert resolve(content, "event_type") == "prescription"

    envelope = parse_envelope({"action": "surgery"})
    assert envelope.kind is RecordType.SURGERY
    assert envelope.is_known


def test_empty_values_fall_through_to_next_synonym():
    assert resolve({"cid": "", "ipfsCid": "bafy123"}, "content_location_ref") == "bafy123"
    assert resolve({"hash": None, "recordHash": "abc"}, "content_hash") == "abc"


def test_unknown_event_is_the_other_variant():
    envelope = parse_envelope({"eventType": "something_new", "title": "x"})
    assert envelope.kind is RecordType.OTHER
    assert envelope.event_type == "something_new"
    assert not envelope.is_known


def test_vaccination_details():
    details = type_details({"vaccine": "BCG", "batchNumber": "B-7", "manufacturer": "Acme"}, "vaccination")
    assert details == {"tags": [], "vaccineName": "BCG", "batchNumber": "B-7", "manufacturer": "Acme"}


def test_field_presence_rules_apply_independently_of_event_type():
    details = type_details(
        {"testType": "CBC", "lab": {"name": "City Lab"}, "procedure": "Appendectomy", "tags": ["urgent"]},
        "record_created",
    )
    assert details["testType"] == "CBC"
    assert details["labName"] == "City Lab"
    assert details["procedureName"] == "Appendectomy"
    assert details["tags"] == ["urgent"]


def test_several_rules_contribute_details():
    content = {
        "medications": [{"name": "Amoxicillin"}, "Ibuprofen", {"medication": "Zinc"}, {}],
        "doctor": "dr-1",
        "vaccine": "BCG",
    }
    details = type_details(content, "prescription")
    assert details["medicationNames"] == ["Amoxicillin", "Ibuprofen", "Zinc"]
    assert details["prescribingDoctor"] == "dr-1"
    assert details["vaccineName"] == "BCG"


def test_medication_names_ignores_non_lists():
    assert medication_names("Amoxicillin") == []
    assert medication_names(None) == []


@pytest.mark.parametrize(
    "content, expected",
    [
        ({"lab": "lab-9", "hospital": "General"}, ProviderType.LAB),
        ({"pharmacy": "ph-1"}, ProviderType.PHARMACY),
        ({"hospital": "General"}, ProviderType.HOSPITAL),
        ({"clinic": "c-1"}, ProviderType.CLINIC),
        ({"doctorName": "Dr. Who"}, ProviderType.DOCTOR),
        ({"providerId": "x"}, ProviderType.OTHER),
    ],
)
def test_provider_type_detection(content, expected):
    assert detect_provider_type(content) is expected


def test_envelope_refs_coerce_objects_and_numbers():
    envelope = parse_envelope({"eventType": "diagnosis", "patient": {"id": "p-9"}, "nftSerial": 4, "lab": {"name": "L"}})
    assert envelope.ref("patient") == "p-9"
    assert envelope.ref("nft_serial") == "4"
    assert envelope.ref("provider") == "L"
