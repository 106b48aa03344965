"""Map FHIR R4 resources onto local record payloads.

Every mapper takes the raw resource dict and returns a plain payload
dict keyed by local column names. Resource mappers always set
``fhir_id`` (``None`` when the resource carries no usable id, which the
sync pipeline skips) and ``patient_id``.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any

_NAME_PLACEHOLDER = "Unknown"


def _coerce_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    if len(text) == 10:
        # Plain FHIR date; fromisoformat would yield a naive midnight anyway.
        text = f"{text}T00:00:00+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _coerce_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, str):
        text = value.strip()
        # FHIR partial dates (YYYY, YYYY-MM) resolve to the first day.
        if len(text) == 4 and text.isdigit():
            return date(int(text), 1, 1)
        if len(text) == 7 and text[4] == "-":
            try:
                return date(int(text[:4]), int(text[5:7]), 1)
            except ValueError:
                return None
        if len(text) >= 10:
            try:
                return date.fromisoformat(text[:10])
            except ValueError:
                return None
    dt = _coerce_datetime(value)
    return dt.date() if dt is not None else None


def _clean_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _resource_id(resource: dict[str, Any]) -> str | None:
    return _clean_str(resource.get("id"))


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _value_from_reference(ref: dict[str, Any] | None) -> str | None:
    if not isinstance(ref, dict):
        return None
    return _clean_str(ref.get("display")) or _clean_str(ref.get("reference"))


def _first_non_empty(values: list[str | None]) -> str | None:
    for value in values:
        cleaned = _clean_str(value)
        if cleaned:
            return cleaned
    return None


def _extract_coding(concept: dict[str, Any] | None) -> tuple[str | None, str | None]:
    """Return ``(display, code)`` for a CodeableConcept."""
    if not isinstance(concept, dict):
        return None, None
    text = _clean_str(concept.get("text"))

    for item in _as_list(concept.get("coding")):
        if not isinstance(item, dict):
            continue
        display = _clean_str(item.get("display"))
        code = _clean_str(item.get("code"))
        if display or code:
            return display or text, code
    return text, None


def _concept_code(concept: dict[str, Any] | None) -> str | None:
    """Status concepts only matter for their code, e.g. ``active``."""
    display, code = _extract_coding(concept)
    return code or display


def _extract_note_text(resource: dict[str, Any]) -> str | None:
    parts = [
        text
        for note in _as_list(resource.get("note"))
        if isinstance(note, dict) and (text := _clean_str(note.get("text")))
    ]
    return "\n".join(parts) if parts else None


def _extract_concept_texts(concepts: Any) -> str | None:
    parts: list[str] = []
    for concept in _as_list(concepts):
        text, _ = _extract_coding(concept if isinstance(concept, dict) else None)
        if text:
            parts.append(text)
    return "; ".join(parts) if parts else None


def _extract_dosage_quantity(
    dosage_instruction: dict[str, Any],
) -> tuple[float | None, str | None, str | None]:
    dose_and_rate = _as_list(dosage_instruction.get("doseAndRate"))
    if not dose_and_rate or not isinstance(dose_and_rate[0], dict):
        return None, None, None
    dose_quantity = dose_and_rate[0].get("doseQuantity")
    if not isinstance(dose_quantity, dict):
        return None, None, None
    value = dose_quantity.get("value")
    numeric = float(value) if isinstance(value, (int, float)) else None
    unit = _clean_str(dose_quantity.get("unit"))
    text = f"{numeric:g} {unit}" if numeric is not None and unit else None
    return numeric, unit, text


def _extract_timing_frequency(dosage_instruction: dict[str, Any]) -> str | None:
    repeat = _as_dict(_as_dict(dosage_instruction.get("timing")).get("repeat"))
    if not repeat:
        return None

    frequency = repeat.get("frequency")
    period = repeat.get("period")
    period_unit = _clean_str(repeat.get("periodUnit"))

    parts: list[str] = []
    if isinstance(frequency, (int, float)):
        parts.append(f"{int(frequency)}x")
    if isinstance(period, (int, float)) and period_unit:
        parts.append(f"every {period:g} {period_unit}")
    elif period_unit:
        parts.append(f"per {period_unit}")
    return " ".join(parts) if parts else None


def _map_medication_status(fhir_status: str | None) -> tuple[str, bool]:
    normalized = (fhir_status or "").strip().lower()
    if normalized in {"active", "draft", "unknown"}:
        return "active", True
    if normalized == "on-hold":
        return "on-hold", True
    if normalized == "completed":
        return "completed", False
    if normalized in {"cancelled", "entered-in-error"}:
        return "cancelled", False
    if normalized == "stopped":
        return "discontinued", False
    return "active", True


def _format_address(address: dict[str, Any]) -> str | None:
    text = _clean_str(address.get("text"))
    if text:
        return text
    parts = [line for line in _as_list(address.get("line")) if _clean_str(line)]
    parts.extend(
        value
        for key in ("city", "state", "postalCode", "country")
        if (value := _clean_str(address.get(key)))
    )
    return ", ".join(part.strip() for part in parts) if parts else None


def map_patient(resource: dict[str, Any]) -> dict[str, Any]:
    """Map a FHIR Patient onto local patient columns.

    Demographics the remote resource does not carry are left out of the
    payload so an update keeps the local value.
    """
    names = [item for item in _as_list(resource.get("name")) if isinstance(item, dict)]
    official = next((item for item in names if item.get("use") == "official"), None)
    name = official or (names[0] if names else {})
    given = [part for part in _as_list(name.get("given")) if _clean_str(part)]

    telecom = [item for item in _as_list(resource.get("telecom")) if isinstance(item, dict)]
    email = _first_non_empty(
        [item.get("value") for item in telecom if item.get("system") == "email"]
    )
    phone = _first_non_empty(
        [item.get("value") for item in telecom if item.get("system") == "phone"]
    )

    addresses = [item for item in _as_list(resource.get("address")) if isinstance(item, dict)]
    language = None
    for communication in _as_list(resource.get("communication")):
        if isinstance(communication, dict):
            _, code = _extract_coding(_as_dict(communication.get("language")))
            if code:
                language = code
                break

    deceased = resource.get("deceasedBoolean")
    if deceased is None and resource.get("deceasedDateTime"):
        deceased = True

    payload: dict[str, Any] = {
        "fhir_id": _resource_id(resource),
        "first_name": " ".join(part.strip() for part in given) or None,
        "last_name": _clean_str(name.get("family")),
        "date_of_birth": _coerce_date(resource.get("birthDate")),
        "gender": _clean_str(resource.get("gender")),
        "email": email,
        "phone": phone,
        "address": _format_address(addresses[0]) if addresses else None,
        "preferred_language": language,
        "is_deceased": deceased if isinstance(deceased, bool) else None,
    }
    return {key: value for key, value in payload.items() if value is not None}


def map_condition(resource: dict[str, Any], patient_id: int) -> dict[str, Any]:
    name, code = _extract_coding(_as_dict(resource.get("code")))
    return {
        "fhir_id": _resource_id(resource),
        "patient_id": patient_id,
        "condition_name": name or code or _NAME_PLACEHOLDER,
        "icd_code": code,
        "clinical_status": _concept_code(_as_dict(resource.get("clinicalStatus"))),
        "verification_status": _concept_code(
            _as_dict(resource.get("verificationStatus"))
        ),
        "severity": _extract_coding(_as_dict(resource.get("severity")))[0],
        "onset_date": _coerce_date(resource.get("onsetDateTime")),
        "abatement_date": _coerce_date(resource.get("abatementDateTime")),
        "recorded_date": _coerce_date(resource.get("recordedDate")),
        "notes": _extract_note_text(resource),
    }


def map_allergy(resource: dict[str, Any], patient_id: int) -> dict[str, Any]:
    allergen, code = _extract_coding(_as_dict(resource.get("code")))
    reactions = [item for item in _as_list(resource.get("reaction")) if isinstance(item, dict)]

    manifestations: list[str] = []
    severity = None
    for reaction in reactions:
        text = _extract_concept_texts(reaction.get("manifestation"))
        if text:
            manifestations.append(text)
        severity = severity or _clean_str(reaction.get("severity"))

    categories = [value for value in _as_list(resource.get("category")) if _clean_str(value)]
    return {
        "fhir_id": _resource_id(resource),
        "patient_id": patient_id,
        "allergen": allergen or code or _NAME_PLACEHOLDER,
        "allergen_code": code,
        "allergy_type": categories[0] if categories else None,
        "criticality": _clean_str(resource.get("criticality")),
        "severity": severity,
        "reaction": "; ".join(manifestations) if manifestations else None,
        "clinical_status": _concept_code(_as_dict(resource.get("clinicalStatus"))),
        "onset_date": _coerce_date(resource.get("onsetDateTime")),
        "notes": _extract_note_text(resource),
    }


def map_medication_request(resource: dict[str, Any], patient_id: int) -> dict[str, Any]:
    med_name, med_code = _extract_coding(
        _as_dict(resource.get("medicationCodeableConcept"))
    )
    if not med_name:
        med_name = _value_from_reference(_as_dict(resource.get("medicationReference")))

    dosage_text = None
    dosage_value = None
    dosage_unit = None
    frequency = None
    route = None
    instructions = None

    dosage_instructions = _as_list(resource.get("dosageInstruction"))
    if dosage_instructions and isinstance(dosage_instructions[0], dict):
        first = dosage_instructions[0]
        dosage_text = instructions = _clean_str(first.get("text"))
        dosage_value, dosage_unit, fallback_text = _extract_dosage_quantity(first)
        dosage_text = dosage_text or fallback_text
        frequency = _extract_timing_frequency(first)
        route = _extract_coding(_as_dict(first.get("route")))[0]

    authored_on = _coerce_datetime(resource.get("authoredOn"))
    validity_period = _as_dict(_as_dict(resource.get("dispenseRequest")).get("validityPeriod"))
    start_date = _coerce_date(validity_period.get("start"))
    if start_date is None and authored_on is not None:
        start_date = authored_on.date()

    status, is_active = _map_medication_status(_clean_str(resource.get("status")))
    return {
        "fhir_id": _resource_id(resource),
        "patient_id": patient_id,
        "name": med_name or med_code or _NAME_PLACEHOLDER,
        "drug_code": med_code,
        "dosage": dosage_text,
        "dosage_value": dosage_value,
        "dosage_unit": dosage_unit,
        "frequency": frequency,
        "route": route,
        "start_date": start_date,
        "end_date": _coerce_date(validity_period.get("end")),
        "prescribed_at": authored_on,
        "is_active": is_active,
        "status": status,
        "prescriber": _value_from_reference(_as_dict(resource.get("requester"))),
        "indication": _extract_concept_texts(resource.get("reasonCode")),
        "instructions": instructions,
        "notes": _extract_note_text(resource),
    }


def map_hospitalization(resource: dict[str, Any], patient_id: int) -> dict[str, Any]:
    period = _as_dict(resource.get("period"))
    hospitalization = _as_dict(resource.get("hospitalization"))

    attending = None
    for participant in _as_list(resource.get("participant")):
        if isinstance(participant, dict):
            attending = _value_from_reference(_as_dict(participant.get("individual")))
            if attending:
                break

    facility = _value_from_reference(_as_dict(resource.get("serviceProvider")))
    if facility is None:
        locations = _as_list(resource.get("location"))
        if locations and isinstance(locations[0], dict):
            facility = _value_from_reference(_as_dict(locations[0].get("location")))

    return {
        "fhir_id": _resource_id(resource),
        "patient_id": patient_id,
        "admission_date": _coerce_datetime(period.get("start")),
        "discharge_date": _coerce_datetime(period.get("end")),
        "facility": facility,
        "reason": _extract_concept_texts(resource.get("reasonCode")),
        "status": _clean_str(resource.get("status")),
        "discharge_disposition": _extract_coding(
            _as_dict(hospitalization.get("dischargeDisposition"))
        )[0],
        "attending_provider": attending,
        "notes": _extract_note_text(resource),
    }


def map_procedure(resource: dict[str, Any], patient_id: int) -> dict[str, Any]:
    name, code = _extract_coding(_as_dict(resource.get("code")))
    performed = _coerce_datetime(resource.get("performedDateTime"))
    if performed is None:
        performed = _coerce_datetime(_as_dict(resource.get("performedPeriod")).get("start"))

    performer = None
    for item in _as_list(resource.get("performer")):
        if isinstance(item, dict):
            performer = _value_from_reference(_as_dict(item.get("actor")))
            if performer:
                break

    return {
        "fhir_id": _resource_id(resource),
        "patient_id": patient_id,
        "procedure_name": name or code or _NAME_PLACEHOLDER,
        "procedure_code": code,
        "status": _clean_str(resource.get("status")),
        "performed_date": performed,
        "performer": performer,
        "body_site": _extract_concept_texts(resource.get("bodySite")),
        "outcome": _extract_coding(_as_dict(resource.get("outcome")))[0],
        "notes": _extract_note_text(resource),
    }


def map_care_plan(resource: dict[str, Any], patient_id: int) -> dict[str, Any]:
    activities: list[str] = []
    for activity in _as_list(resource.get("activity")):
        if not isinstance(activity, dict):
            continue
        detail = _as_dict(activity.get("detail"))
        text = _first_non_empty(
            [
                _extract_coding(_as_dict(detail.get("code")))[0],
                detail.get("description"),
            ]
        )
        if text:
            activities.append(text)

    period = _as_dict(resource.get("period"))
    title = _first_non_empty(
        [
            resource.get("title"),
            _extract_concept_texts(resource.get("category")),
        ]
    )
    return {
        "fhir_id": _resource_id(resource),
        "patient_id": patient_id,
        "title": title or "Care plan",
        "description": _clean_str(resource.get("description")),
        "status": _clean_str(resource.get("status")),
        "intent": _clean_str(resource.get("intent")),
        "activities": "\n".join(activities) if activities else None,
        "period_start": _coerce_date(period.get("start")),
        "period_end": _coerce_date(period.get("end")),
        "author": _value_from_reference(_as_dict(resource.get("author"))),
        "notes": _extract_note_text(resource),
    }


def map_goal(resource: dict[str, Any], patient_id: int) -> dict[str, Any]:
    description, _ = _extract_coding(_as_dict(resource.get("description")))

    target_date = None
    for target in _as_list(resource.get("target")):
        if isinstance(target, dict):
            target_date = _coerce_date(target.get("dueDate"))
            if target_date:
                break

    return {
        "fhir_id": _resource_id(resource),
        "patient_id": patient_id,
        "description": description or _NAME_PLACEHOLDER,
        "lifecycle_status": _clean_str(resource.get("lifecycleStatus")),
        "achievement_status": _concept_code(_as_dict(resource.get("achievementStatus"))),
        "priority": _concept_code(_as_dict(resource.get("priority"))),
        "category": _extract_concept_texts(resource.get("category")),
        "start_date": _coerce_date(resource.get("startDate")),
        "target_date": target_date,
        "notes": _extract_note_text(resource),
    }
