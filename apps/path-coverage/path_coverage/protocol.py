"""Clients for the systems a trigger drives: the requesting gateway and the mock provider."""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from typing import Any
from xml.sax.saxutils import escape

import httpx
import structlog

from mock_provider.behavior import BehaviorMode

from .errors import TriggerError
from .models import CorrelationIds

LOGGER = structlog.get_logger("path_coverage")

WS_PLUGIN_PATH = "/domibus/services/wsplugin"
REQUEST_VARIANTS = ("valid", "malformed_xml", "missing_slots")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _slot(name: str, value_type: str, value: str) -> str:
    return f"""
    <rim:Slot name="{name}">
        <rim:SlotValue xsi:type="rim:{value_type}">
            <rim:Value>{value}</rim:Value>
        </rim:SlotValue>
    </rim:Slot>"""


def build_query_request(
    ids: CorrelationIds,
    issued_at: str | None = None,
    *,
    possibility_for_preview: bool = True,
    preview_location: str | None = None,
    variant: str = "valid",
) -> str:
    """Render an OOTS ``QueryRequest`` for a tertiary-education diploma.

    ``variant`` deliberately breaks the request: ``malformed_xml`` is not
    well-formed, ``missing_slots`` is well-formed but lacks the procedure and
    evidence-requester slots the business rules demand.
    """

    if variant not in REQUEST_VARIANTS:
        raise ValueError(f"Unknown request variant {variant!r}; expected one of {', '.join(REQUEST_VARIANTS)}")

    preview_slot = _slot("PossibilityForPreview", "BooleanValueType", "true") if possibility_for_preview else ""
    location_slot = (
        _slot("PreviewLocation", "StringValueType", escape(preview_location)) if preview_location else ""
    )
    procedure_slot = """
    <rim:Slot name="Procedure">
        <rim:SlotValue xsi:type="rim:InternationalStringValueType">
            <rim:Value>
                <rim:LocalizedString value="T3"/>
            </rim:Value>
        </rim:SlotValue>
    </rim:Slot>"""
    requester_slot = """
    <rim:Slot name="EvidenceRequester">
        <rim:SlotValue xsi:type="rim:CollectionValueType" collectionType="urn:oasis:names:tc:ebxml-regrep:CollectionType:Set">
            <rim:Element xsi:type="rim:AnyValueType">
                <sdg:Agent>
                    <sdg:Identifier schemeID="urn:cef.eu:names:identifier:EAS:0106">50973029</sdg:Identifier>
                    <sdg:Name lang="EN">Dienst Uitvoering Onderwijs</sdg:Name>
                    <sdg:Address>
                        <sdg:AdminUnitLevel1>NL</sdg:AdminUnitLevel1>
                    </sdg:Address>
                    <sdg:Classification>ER</sdg:Classification>
                </sdg:Agent>
            </rim:Element>
        </rim:SlotValue>
    </rim:Slot>"""
    if variant == "missing_slots":
        procedure_slot = requester_slot = ""

    document = f"""<?xml version="1.0" encoding="UTF-8"?>
<query:QueryRequest xmlns:query="urn:oasis:names:tc:ebxml-regrep:xsd:query:4.0"
                    xmlns:rim="urn:oasis:names:tc:ebxml-regrep:xsd:rim:4.0"
                    xmlns:rs="urn:oasis:names:tc:ebxml-regrep:xsd:rs:4.0"
                    xmlns:sdg="http://data.europa.eu/p4s"
                    xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
                    xmlns:xlink="http://www.w3.org/1999/xlink"
                    id="{ids.query_id}">
{_slot("SpecificationIdentifier", "StringValueType", "oots-edm:v1.0")}
{_slot("IssueDateTime", "DateTimeValueType", issued_at or utc_now_iso())}
{procedure_slot}
{preview_slot}
{_slot("ExplicitRequestGiven", "BooleanValueType", "true")}
    <rim:Slot name="Requirements">
        <rim:SlotValue xsi:type="rim:CollectionValueType" collectionType="urn:oasis:names:tc:ebxml-regrep:CollectionType:Set">
            <rim:Element xsi:type="rim:AnyValueType">
                <sdg:Requirement>
                    <sdg:Identifier>https://sr.oots.tech.ec.europa.eu/requirements/dbe25e4e-fc46-3abd-823c-1bcfd54cb78d</sdg:Identifier>
                    <sdg:Name lang="EN">Proof of qualification level of tertiary education diploma/certificate/degree and its courses</sdg:Name>
                </sdg:Requirement>
            </rim:Element>
        </rim:SlotValue>
    </rim:Slot>
{requester_slot}
    <rim:Slot name="EvidenceProvider">
        <rim:SlotValue xsi:type="rim:AnyValueType">
            <sdg:Agent>
                <sdg:Identifier schemeID="urn:oasis:names:tc:ebcore:partyid-type:unregistered:NL">00000001800866472000</sdg:Identifier>
                <sdg:Name lang="EN">EMREX - DUO NL</sdg:Name>
            </sdg:Agent>
        </rim:SlotValue>
    </rim:Slot>
{location_slot}
    <query:ResponseOption returnType="LeafClassWithRepositoryItem"/>

    <query:Query queryDefinition="DocumentQuery">
        <rim:Slot name="NaturalPerson">
            <rim:SlotValue xsi:type="rim:AnyValueType">
                <sdg:Person>
                    <sdg:LevelOfAssurance>High</sdg:LevelOfAssurance>
                    <sdg:FamilyName>Smith</sdg:FamilyName>
                    <sdg:GivenName>Jonas</sdg:GivenName>
                    <sdg:DateOfBirth>1999-03-01</sdg:DateOfBirth>
                </sdg:Person>
            </rim:SlotValue>
        </rim:Slot>

        <rim:Slot name="EvidenceRequest">
            <rim:SlotValue xsi:type="rim:AnyValueType">
                <sdg:DataServiceEvidenceType>
                    <sdg:Identifier>8387ddbc-3618-4584-9ebd-3060d56edb6a</sdg:Identifier>
                    <sdg:EvidenceTypeClassification>https://sr.oots.tech.ec.europa.eu/evidencetypeclassifications/NL/fba698b1-4939-47a6-8445-4f6b8b94b60a</sdg:EvidenceTypeClassification>
                    <sdg:Title lang="EN">Elmo (1.5)</sdg:Title>
                    <sdg:DistributedAs>
                        <sdg:Format>application/pdf</sdg:Format>
                    </sdg:DistributedAs>
                </sdg:DataServiceEvidenceType>
            </rim:SlotValue>
        </rim:Slot>
    </query:Query>

</query:QueryRequest>"""

    if variant == "malformed_xml":
        # drop the closing root tag and leave an element unterminated
        return document.rsplit("</query:QueryRequest>", 1)[0] + "<rim:Slot name=\"Broken\">"
    return document


def build_submit_envelope(ids: CorrelationIds, payload: str, timestamp: str | None = None) -> str:
    """Wrap ``payload`` in a SOAP 1.2 ``submitRequest`` for the Domibus WS plugin (red to blue gateway)."""

    encoded = base64.b64encode(payload.encode("utf-8")).decode("ascii")
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<soap:Envelope xmlns:soap="http://www.w3.org/2003/05/soap-envelope"
               xmlns:ns="http://eu.domibus.wsplugin/"
               xmlns:eb="http://docs.oasis-open.org/ebxml-msg/ebms/v3.0/ns/core/200704/">
    <soap:Header>
        <eb:Messaging>
            <eb:UserMessage>
                <eb:MessageInfo>
                    <eb:Timestamp>{timestamp or utc_now_iso()}</eb:Timestamp>
                    <eb:MessageId>{ids.message_id}</eb:MessageId>
                </eb:MessageInfo>
                <eb:PartyInfo>
                    <eb:From>
                        <eb:PartyId type="urn:oasis:names:tc:ebcore:partyid-type:unregistered">red_gw</eb:PartyId>
                        <eb:Role>http://docs.oasis-open.org/ebxml-msg/ebms/v3.0/ns/core/200704/initiator</eb:Role>
                    </eb:From>
                    <eb:To>
                        <eb:PartyId type="urn:oasis:names:tc:ebcore:partyid-type:unregistered">blue_gw</eb:PartyId>
                        <eb:Role>http://docs.oasis-open.org/ebxml-msg/ebms/v3.0/ns/core/200704/responder</eb:Role>
                    </eb:To>
                </eb:PartyInfo>
                <eb:CollaborationInfo>
                    <eb:Service type="urn:oots">urn:oots:services:evidence</eb:Service>
                    <eb:Action>ExecuteQueryRequest</eb:Action>
                    <eb:AgreementRef type="urn:oots">urn:oots:agreement</eb:AgreementRef>
                    <eb:ConversationId>{ids.conversation_id}</eb:ConversationId>
                </eb:CollaborationInfo>
                <eb:MessageProperties>
                    <eb:Property name="originalSender">urn:oasis:names:tc:ebcore:partyid-type:unregistered:test-requester</eb:Property>
                    <eb:Property name="finalRecipient">urn:oasis:names:tc:ebcore:partyid-type:unregistered:test-provider</eb:Property>
                </eb:MessageProperties>
                <eb:PayloadInfo>
                    <eb:PartInfo href="cid:message"/>
                </eb:PayloadInfo>
            </eb:UserMessage>
        </eb:Messaging>
    </soap:Header>
    <soap:Body>
        <ns:submitRequest>
            <payload payloadId="cid:message" contentType="application/x-ebrs+xml">
                <value>{encoded}</value>
            </payload>
        </ns:submitRequest>
    </soap:Body>
</soap:Envelope>"""


class GatewayClient:
    """Submits requests to the requesting gateway's WS plugin."""

    def __init__(self, base_url: str, user: str, password: str, client: httpx.AsyncClient) -> None:
        self._url = f"{base_url.rstrip('/')}{WS_PLUGIN_PATH}"
        self._auth = httpx.BasicAuth(user, password)
        self._client = client

    async def submit(self, ids: CorrelationIds, payload: str) -> bool:
        """Accept/reject verdict of the gateway; effects are only visible in the log store."""

        envelope = build_submit_envelope(ids, payload)
        log = LOGGER.bind(conversation_id=ids.conversation_id, message_id=ids.message_id)
        try:
            response = await self._client.post(
                self._url,
                content=envelope.encode("utf-8"),
                headers={"Content-Type": "application/soap+xml; charset=utf-8"},
                auth=self._auth,
            )
        except httpx.HTTPError as exc:
            log.error("gateway_submit_failed", url=self._url, error=f"{type(exc).__name__}: {exc}")
            return False
        accepted = response.status_code == 200 and "soap:Fault" not in response.text
        log.info("gateway_submit_completed", status=response.status_code, accepted=accepted)
        return accepted


class ProviderClient:
    """Drives the mock provider's control API and redirect endpoint."""

    def __init__(self, base_url: str, client: httpx.AsyncClient) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client

    async def set_behavior(
        self,
        mode: BehaviorMode | str,
        delay_ms: int = 0,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"mode": BehaviorMode(mode).value, "delay": delay_ms}
        if session_id:
            body["sessionId"] = session_id
        response = await self._request("POST", "/test/behavior", json=body)
        return response.json()

    async def health(self) -> dict[str, Any]:
        return (await self._request("GET", "/health")).json()

    async def simulate_callback(self, session_id: str, return_url: str, timeout: float | None = None) -> int:
        """Emulate the user completing the EMREX flow; returns the provider's HTTP status.

        In ``timeout`` mode the provider never answers, so callers must pass a
        ``timeout`` they are prepared to see expire (``httpx.TimeoutException``).
        """

        params = {"sessionId": session_id, "returnUrl": return_url}
        kwargs: dict[str, Any] = {"params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout
        response = await self._client.get(f"{self._base_url}/emrex", **kwargs)
        LOGGER.info("provider_flow_completed", session_id=session_id, status=response.status_code)
        return response.status_code

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TriggerError(f"Mock provider request {method} {url} failed: {type(exc).__name__}: {exc}") from exc
        if not response.is_success:
            raise TriggerError(f"Mock provider request {method} {url} returned HTTP {response.status_code}: {response.text[:200]}")
        return response
