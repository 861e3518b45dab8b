"""Shape audit of the most recent stored record per known event action.

Independent of any path run: it inspects whatever the index already holds and
checks the exact values and required fields each producer must emit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import structlog

from .fields import get_nested_value, missing_required_fields, validate_fields
from .log_store import LogStoreClient
from .models import LoggerName

LOGGER = structlog.get_logger("path_coverage")


class AuditStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ShapeRule:
    name: str
    event_action: str
    logger: Optional[LoggerName] = None
    exact: dict[str, Any] = field(default_factory=dict)
    required: tuple[str, ...] = ("trace.id", "event.outcome")
    # missing records fail the audit only for mandatory rules
    mandatory: bool = False


@dataclass(frozen=True)
class AuditItem:
    rule: ShapeRule
    status: AuditStatus
    errors: list[str] = field(default_factory=list)


def _app(name: str, action: str, *required: str) -> ShapeRule:
    return ShapeRule(name, action, LoggerName.APP, required=required or ("trace.id", "event.outcome"))


def _ext(name: str, action: str) -> ShapeRule:
    return ShapeRule(name, action, LoggerName.EXT)


AUDIT_RULES: tuple[ShapeRule, ...] = (
    ShapeRule(
        "Evidence Request Log (OOTS)",
        "evidence_request_received",
        exact={
            "messaging.system": "domibus",
            "messaging.operation": "receive",
            "event.action": "evidence_request_received",
            "event.outcome": "success",
            "oots.message.type": "QueryRequest",
        },
        required=(
            "trace.id",
            "oots.message.id",
            "oots.conversation.id",
            "oots.request.id",
            "oots.non_repudiation",
        ),
        mandatory=True,
    ),
    ShapeRule(
        "Evidence Response Log (OOTS)",
        "evidence_response_sent",
        exact={
            "messaging.system": "domibus",
            "messaging.operation": "publish",
            "event.action": "evidence_response_sent",
            "oots.message.type": "QueryResponse",
        },
        required=(
            "trace.id",
            "oots.message.id",
            "oots.conversation.id",
            "oots.response.result",
            "oots.non_repudiation",
        ),
        mandatory=True,
    ),
    _app(
        "Domibus Message Retrieval Started",
        "domibus_message_retrieval_started",
        "trace.id",
        "event.outcome",
        "event.category",
        "event.type",
    ),
    _app("Domibus Message Retrieval Completed", "domibus_message_retrieval_completed"),
    _app("OOTS Request XML Validation", "oots_request_xml_validation_completed"),
    _app("OOTS Request Schematron Validation", "oots_request_schematron_validation_completed"),
    _app("Domibus Message Submission Started", "domibus_message_submission_started"),
    _app("Domibus Message Submission Completed", "domibus_message_submission_completed"),
    _app("Message Processing Completed", "message_processing_completed"),
    _ext("User Redirected to EMREX", "user_redirected_to_emrex"),
    _ext("EMREX Response Received", "emrex_response_received"),
    _ext("ELM Converter Request Sent", "elm_converter_request_sent"),
    _ext("ELM Converter Request Completed", "elm_converter_request_completed"),
)


def check_shape(record: dict[str, Any], rule: ShapeRule) -> list[str]:
    errors: list[str] = []
    if rule.logger is not None:
        actual = get_nested_value(record, "log.logger")
        if actual != rule.logger.value:
            errors.append(f"log.logger: expected '{rule.logger.value}', got '{actual}'")
    errors.extend(validate_fields(record, rule.exact))
    errors.extend(f"{path}: required field missing" for path in missing_required_fields(record, rule.required))
    return errors


async def audit_log_shapes(
    store: LogStoreClient,
    rules: tuple[ShapeRule, ...] = AUDIT_RULES,
) -> list[AuditItem]:
    items: list[AuditItem] = []
    for rule in rules:
        logger = rule.logger.value if rule.logger else None
        record = await store.latest_by_event_action(rule.event_action, logger=logger)
        if record is None:
            status = AuditStatus.FAILED if rule.mandatory else AuditStatus.SKIPPED
            errors = ["No document found"] if rule.mandatory else []
            items.append(AuditItem(rule, status, errors))
            continue
        errors = check_shape(record, rule)
        items.append(AuditItem(rule, AuditStatus.PASSED if not errors else AuditStatus.FAILED, errors))

    LOGGER.info(
        "audit_finished",
        passed=sum(1 for item in items if item.status is AuditStatus.PASSED),
        failed=sum(1 for item in items if item.status is AuditStatus.FAILED),
        skipped=sum(1 for item in items if item.status is AuditStatus.SKIPPED),
    )
    return items
