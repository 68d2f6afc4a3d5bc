"""FHIR documents for the NPHIES exchange.

Each known service has an input contract (JSON Schema) and a fixed document
shape. Unknown services pass their fields through unchanged so that services
not yet modelled can still be forwarded and signed.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from jsonschema import Draft202012Validator

from edge_gateway.core.errors import validation_error

CLAIM_CATEGORY_SYSTEM = "http://terminology.hl7.org/CodeSystem/claimcategory"
CLAIM_TYPE_SYSTEM = "http://terminology.hl7.org/CodeSystem/claim-type"
SNOMED_SYSTEM = "http://snomed.info/sct"
ICD10_SYSTEM = "http://hl7.org/fhir/sid/icd-10"
DEFAULT_CURRENCY = "SAR"

SERVICE_PATHS = {
    "eligibility": "eligibility",
    "claim": "claim",
    "pre-authorization": "pre-authorization",
    "payment": "payment-notice",
    "patient-record": "patient-record",
}

_IDENTIFIER = {"type": "string", "minLength": 1, "pattern": r"^\S+$"}
_AMOUNT = {"type": "number", "minimum": 0}

ELIGIBILITY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["patientId", "coverageId"],
    "properties": {
        "patientId": _IDENTIFIER,
        "coverageId": _IDENTIFIER,
        "sctCode": _IDENTIFIER,
    },
}

CLAIM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["patientId", "coverageId"],
    "properties": {
        "claimId": _IDENTIFIER,
        "patientId": _IDENTIFIER,
        "coverageId": _IDENTIFIER,
        "diagnosis": _IDENTIFIER,
        "sctCode": _IDENTIFIER,
        "amount": _AMOUNT,
        "currency": {"type": "string", "pattern": "^[A-Z]{3}$"},
    },
}

PAYMENT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["claimId", "amount"],
    "properties": {
        "claimId": _IDENTIFIER,
        "amount": _AMOUNT,
        "currency": {"type": "string", "pattern": "^[A-Z]{3}$"},
        "paymentDate": {"type": "string", "minLength": 1},
    },
}


def service_path(service: str) -> str:
    return SERVICE_PATHS.get(service, service)


def _reference(resource_type: str, identifier: str) -> dict[str, str]:
    return {"reference": f"{resource_type}/{identifier}"}


def _coding(system: str, code: str) -> dict[str, list[dict[str, str]]]:
    return {"coding": [{"system": system, "code": code}]}


def _money(fields: dict[str, Any]) -> dict[str, Any]:
    return {"value": fields["amount"], "currency": fields.get("currency", DEFAULT_CURRENCY)}


def build_eligibility(fields: dict[str, Any]) -> dict[str, Any]:
    item: dict[str, Any] = {"category": _coding(CLAIM_CATEGORY_SYSTEM, "service")}
    if fields.get("sctCode"):
        item["productOrService"] = _coding(SNOMED_SYSTEM, fields["sctCode"])
    return {
        "resourceType": "EligibilityRequest",
        "status": "active",
        "patient": _reference("Patient", fields["patientId"]),
        "insurance": [_reference("Coverage", fields["coverageId"])],
        "item": [item],
    }


def _build_claim(fields: dict[str, Any], use: str) -> dict[str, Any]:
    document: dict[str, Any] = {"resourceType": "Claim"}
    if fields.get("claimId"):
        document["id"] = fields["claimId"]
    document.update(
        {
            "status": "active",
            "use": use,
            "type": _coding(CLAIM_TYPE_SYSTEM, "professional"),
            "patient": _reference("Patient", fields["patientId"]),
            "insurance": [
                {
                    "sequence": 1,
                    "focal": True,
                    "coverage": _reference("Coverage", fields["coverageId"]),
                }
            ],
        }
    )
    if fields.get("diagnosis"):
        document["diagnosis"] = [
            {
                "sequence": 1,
                "diagnosisCodeableConcept": _coding(ICD10_SYSTEM, fields["diagnosis"]),
            }
        ]
    if fields.get("sctCode"):
        document["item"] = [
            {"sequence": 1, "productOrService": _coding(SNOMED_SYSTEM, fields["sctCode"])}
        ]
    if "amount" in fields:
        document["total"] = _money(fields)
    return document


def build_claim(fields: dict[str, Any]) -> dict[str, Any]:
    return _build_claim(fields, use="claim")


def build_pre_authorization(fields: dict[str, Any]) -> dict[str, Any]:
    return _build_claim(fields, use="preauthorization")


def build_payment_notice(fields: dict[str, Any]) -> dict[str, Any]:
    document: dict[str, Any] = {
        "resourceType": "PaymentNotice",
        "status": "active",
        "request": _reference("Claim", fields["claimId"]),
        "amount": _money(fields),
    }
    if fields.get("paymentDate"):
        document["paymentDate"] = fields["paymentDate"]
    return document


@dataclass(frozen=True)
class ServiceContract:
    schema: dict[str, Any]
    build: Callable[[dict[str, Any]], dict[str, Any]]

    def validator(self) -> Draft202012Validator:
        return Draft202012Validator(self.schema)


DEFAULT_CONTRACTS: dict[str, ServiceContract] = {
    "eligibility": ServiceContract(ELIGIBILITY_SCHEMA, build_eligibility),
    "claim": ServiceContract(CLAIM_SCHEMA, build_claim),
    "pre-authorization": ServiceContract(CLAIM_SCHEMA, build_pre_authorization),
    "payment": ServiceContract(PAYMENT_SCHEMA, build_payment_notice),
}


class FHIRPayloadBuilder:
    def __init__(self, contracts: dict[str, ServiceContract] | None = None):
        contracts = DEFAULT_CONTRACTS if contracts is None else contracts
        self._contracts = dict(contracts)
        self._validators = {name: c.validator() for name, c in self._contracts.items()}

    def known_services(self) -> list[str]:
        return sorted(self._contracts)

    def is_known(self, service: str) -> bool:
        return service in self._contracts

    def build(self, service: str, fields: dict[str, Any]) -> dict[str, Any]:
        contract = self._contracts.get(service)
        if contract is None:
            return fields

        errors = sorted(
            self._validators[service].iter_errors(fields),
            key=lambda error: list(error.path),
        )
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.path) or "body"
            raise validation_error(f"Invalid {service} request: {location}: {first.message}")
        return contract.build(fields)
