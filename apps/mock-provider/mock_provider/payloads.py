"""ELMO documents and the callback payload synthesized for each behavior mode."""

from __future__ import annotations

import base64
import gzip
from dataclasses import dataclass

from .behavior import BehaviorMode

RETURN_OK = "NCP_OK"
RETURN_ERROR = "NCP_ERROR"
RETURN_NO_RESULTS = "NCP_NO_RESULTS"
RETURN_CANCEL = "NCP_CANCEL"

SAMPLE_ELMO = """<?xml version="1.0" encoding="UTF-8"?>
<elmo xmlns="https://github.com/emrex-eu/elmo-schemas/tree/v1"
      xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">
  <generatedDate>2025-01-09T10:00:00Z</generatedDate>
  <learner>
    <citizenship>NL</citizenship>
    <identifier type="nationalIdentifier">BSN123456789</identifier>
    <givenNames>Jonas</givenNames>
    <familyName>Smith</familyName>
    <bday>1999-03-01</bday>
  </learner>
  <report>
    <issuer>
      <identifier type="schac">urn:schac:personalUniqueCode:nl:local:universityX</identifier>
      <title xml:lang="en">University X</title>
      <country>NL</country>
    </issuer>
    <learningOpportunitySpecification>
      <identifier type="local">DEGREE-001</identifier>
      <title xml:lang="en">Bachelor of Science in Computer Science</title>
      <type>Degree</type>
      <iscedCode>0613</iscedCode>
      <specifies>
        <learningOpportunityInstance>
          <start>2017-09-01</start>
          <date>2021-06-30</date>
          <status>passed</status>
          <resultLabel>Cum Laude</resultLabel>
          <credit>
            <scheme>ects</scheme>
            <value>180</value>
          </credit>
        </learningOpportunityInstance>
      </specifies>
    </learningOpportunitySpecification>
  </report>
  <attachment>
    <type>Diploma</type>
    <title xml:lang="en">Diploma Certificate</title>
    <content>JVBERi0xLjQKJeLjz9MKMSAwIG9iago8PC9UeXBlL0NhdGFsb2cvUGFnZXMgMiAwIFI+PgplbmRvYmoKMiAwIG9iago8PC9UeXBlL1BhZ2VzL0tpZHNbMyAwIFJdL0NvdW50IDE+PgplbmRvYmoKdHJhaWxlcgo8PC9TaXplIDQvUm9vdCAxIDAgUj4+CiUlRU9G</content>
  </attachment>
</elmo>"""

# Learner block lacks citizenship/identifier and the report has no
# learningOpportunitySpecification, so schema validation downstream fails.
INVALID_ELMO = """<?xml version="1.0" encoding="UTF-8"?>
<elmo xmlns="https://github.com/emrex-eu/elmo-schemas/tree/v1">
  <generatedDate>2025-01-14T10:00:00Z</generatedDate>
  <learner>
    <givenNames>Jonas</givenNames>
    <familyName>Smith</familyName>
    <bday>1999-03-01</bday>
  </learner>
  <report>
    <issuer>
      <identifier type="schac">invalid</identifier>
      <country>NL</country>
    </issuer>
  </report>
</elmo>"""

MISMATCHED_IDENTITY_ELMO = """<?xml version="1.0" encoding="UTF-8"?>
<elmo xmlns="https://github.com/emrex-eu/elmo-schemas/tree/v1"
      xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">
  <generatedDate>2025-01-14T10:00:00Z</generatedDate>
  <learner>
    <citizenship>NL</citizenship>
    <identifier type="nationalIdentifier">BSN999999999</identifier>
    <givenNames>WrongFirstName</givenNames>
    <familyName>WrongLastName</familyName>
    <bday>1985-12-25</bday>
  </learner>
  <report>
    <issuer>
      <identifier type="schac">urn:schac:personalUniqueCode:nl:local:universityX</identifier>
      <title xml:lang="en">University X</title>
      <country>NL</country>
    </issuer>
    <learningOpportunitySpecification>
      <identifier type="local">DEGREE-002</identifier>
      <title xml:lang="en">Bachelor of Arts</title>
      <type>Degree</type>
      <iscedCode>0613</iscedCode>
      <specifies>
        <learningOpportunityInstance>
          <start>2017-09-01</start>
          <date>2021-06-30</date>
          <status>passed</status>
          <credit>
            <scheme>ects</scheme>
            <value>180</value>
          </credit>
        </learningOpportunityInstance>
      </specifies>
    </learningOpportunitySpecification>
  </report>
</elmo>"""

NOT_GZIPPED = b"this is not gzipped data"


@dataclass(frozen=True)
class CallbackPayload:
    """Form fields posted back to the bridge's store endpoint."""

    return_code: str
    elmo: str | None = None
    return_message: str | None = None

    def form_fields(self, session_id: str) -> dict[str, str]:
        fields = {"sessionId": session_id, "returnCode": self.return_code}
        if self.elmo:
            fields["elmo"] = self.elmo
        if self.return_message:
            fields["returnMessage"] = self.return_message
        return fields


def encode_elmo(document: str) -> str:
    """Gzip then base64 an ELMO document the way EMREX providers transmit it."""

    return base64.b64encode(gzip.compress(document.encode("utf-8"))).decode("ascii")


def decode_elmo(value: str) -> str:
    return gzip.decompress(base64.b64decode(value)).decode("utf-8")


def build_callback_payload(mode: BehaviorMode) -> CallbackPayload:
    """Synthesize the callback payload for ``mode``.

    ``timeout`` has no payload because no callback is ever issued for it.
    """

    if mode is BehaviorMode.SUCCESS:
        return CallbackPayload(RETURN_OK, elmo=encode_elmo(SAMPLE_ELMO))
    if mode is BehaviorMode.ERROR:
        return CallbackPayload(RETURN_ERROR, return_message="An error occurred at the EMREX provider")
    if mode is BehaviorMode.NO_RECORDS:
        return CallbackPayload(RETURN_NO_RESULTS, return_message="No matching records found for this learner")
    if mode is BehaviorMode.CANCEL:
        return CallbackPayload(RETURN_CANCEL, return_message="User cancelled the EMREX flow")
    if mode is BehaviorMode.INVALID_GZIP:
        return CallbackPayload(RETURN_OK, elmo=base64.b64encode(NOT_GZIPPED).decode("ascii"))
    if mode is BehaviorMode.INVALID_XML:
        return CallbackPayload(RETURN_OK, elmo=encode_elmo(INVALID_ELMO))
    if mode is BehaviorMode.IDENTITY_MISMATCH:
        return CallbackPayload(RETURN_OK, elmo=encode_elmo(MISMATCHED_IDENTITY_ELMO))
    raise ValueError(f"Behavior mode {mode.value} does not produce a callback")
