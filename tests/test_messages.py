from __future__ import annotations

import pytest

from minisip.exceptions import SIPParseError
from minisip.sip import ReceivedMessage, SIPMethod

from .conftest import CALLER_NUMBER, INVITE_CALL_ID, INVITE_CSEQ, SDP_BODY, invite, sip_text


@pytest.fixture
def invite_message() -> ReceivedMessage:
    return ReceivedMessage.parse(invite(), peer=("192.168.178.1", 5060))


class TestParseRequests:
    def test_invite(self, invite_message):
        assert invite_message.is_request
        assert not invite_message.is_response
        assert invite_message.method is SIPMethod.INVITE
        assert invite_message.cseq == INVITE_CSEQ
        assert invite_message.cseq_method == "INVITE"
        assert invite_message.call_id == INVITE_CALL_ID
        assert invite_message.peer == ("192.168.178.1", 5060)

    def test_from_fields(self, invite_message):
        assert invite_message.from_number == CALLER_NUMBER
        assert invite_message.from_name == "Caller"
        assert invite_message.from_tag == "abc"

    def test_contact_uri(self, invite_message):
        assert invite_message.contact_uri == f"sip:{CALLER_NUMBER}@192.168.178.1:5060;transport=udp"

    def test_payload_slice(self, invite_message):
        assert invite_message.content_length == len(SDP_BODY)
        assert invite_message.content == SDP_BODY

    def test_body_lines_are_not_headers(self, invite_message):
        assert "v" not in invite_message.headers
        assert [key for key, _ in invite_message.fields][-1] == "Content-Length"

    def test_headers_case_insensitive(self, invite_message):
        assert invite_message.headers["call-id"] == INVITE_CALL_ID
        assert invite_message.headers["CSEQ"] == f"{INVITE_CSEQ} INVITE"

    def test_unsupported_method(self):
        message = ReceivedMessage.parse(
            sip_text("OPTIONS sip:620@192.168.178.20 SIP/2.0", "CSeq: 1 OPTIONS")
        )
        assert message.method is None
        assert not message.is_request

    def test_method_at_second_position(self):
        message = ReceivedMessage.parse(sip_text("x BYE sip:620@192.168.178.20 SIP/2.0", "CSeq: 2 BYE"))
        assert message.method is SIPMethod.BYE

    def test_method_outside_configured_set(self):
        message = ReceivedMessage.parse(
            sip_text("INVITE sip:620@192.168.178.20 SIP/2.0", "CSeq: 1 INVITE"),
            methods={"REGISTER"},
        )
        assert message.method is None

    def test_repeated_headers(self):
        message = ReceivedMessage.parse(
            sip_text(
                "INVITE sip:620@192.168.178.20 SIP/2.0",
                "Via: SIP/2.0/UDP 10.0.0.1:5060;branch=z9hG4bKfirst",
                "Via: SIP/2.0/UDP 10.0.0.2:5060;branch=z9hG4bKsecond",
                "Content-Length: 0",
            )
        )
        assert message.headers["Via"].endswith("z9hG4bKfirst")
        assert len(message.get_all("via")) == 2


class TestParseResponses:
    def test_challenge(self):
        message = ReceivedMessage.parse(
            sip_text(
                "SIP/2.0 401 Unauthorized",
                "Via: SIP/2.0/UDP 192.168.178.20:5060;branch=z9hG4bKabc;rport=5062",
                'From: "miniSIP4fb" <sip:620@fritz.box>;tag=1234567890',
                "Call-ID: X@192.168.178.20",
                "CSeq: 3 REGISTER",
                'WWW-Authenticate: Digest realm="fritz.box", nonce="F00BA4", qop="auth"',
                "Content-Length: 0",
            )
        )
        assert message.is_response
        assert message.status_code == 401
        assert message.cseq == 3
        assert message.cseq_method == "REGISTER"
        assert message.rport == 5062
        assert message.from_tag == "1234567890"
        assert message.from_number == "620"
        assert (message.realm, message.nonce, message.qop) == ("fritz.box", "F00BA4", "auth")
        assert message.has_challenge

    def test_unquoted_qop(self):
        message = ReceivedMessage.parse(
            sip_text(
                "SIP/2.0 407 Proxy Authentication Required",
                'Proxy-Authenticate: Digest realm="r", nonce="n", qop=auth-int',
            )
        )
        assert message.qop == "auth-int"

    def test_expires_from_contact(self):
        message = ReceivedMessage.parse(
            sip_text(
                "SIP/2.0 200 OK",
                "Contact: <sip:620@192.168.178.20>;expires=300",
                "Expires: 3600",
            )
        )
        assert message.expires == 300
        assert message.contact_uri == "sip:620@192.168.178.20"

    def test_expires_from_header(self):
        message = ReceivedMessage.parse(sip_text("SIP/2.0 200 OK", "Expires: 600"))
        assert message.expires == 600

    def test_without_challenge(self):
        message = ReceivedMessage.parse(sip_text("SIP/2.0 200 OK", "CSeq: 1 REGISTER"))
        assert not message.has_challenge
        assert message.realm is None


class TestParseErrors:
    @pytest.mark.parametrize("data", [b"", "", b"\r\n\r\n"])
    def test_empty(self, data):
        message = ReceivedMessage.parse(data)
        assert message.empty
        assert message.status_code is None
        assert message.method is None

    @pytest.mark.parametrize("value", ["<sip:620@fritz.box>\r", "<sip:620@fritz.box>\nX: y"])
    def test_stray_line_break(self, value):
        with pytest.raises(SIPParseError):
            ReceivedMessage.parse(sip_text("SIP/2.0 200 OK", f"To: {value}", "Content-Length: 0"))

    def test_missing_separator(self):
        with pytest.raises(SIPParseError):
            ReceivedMessage.parse(sip_text("SIP/2.0 200 OK", "CSeq 1 REGISTER"))

    def test_malformed_cseq(self):
        with pytest.raises(SIPParseError):
            ReceivedMessage.parse(sip_text("SIP/2.0 200 OK", "CSeq: one REGISTER"))

    def test_malformed_content_length(self):
        with pytest.raises(SIPParseError):
            ReceivedMessage.parse(sip_text("SIP/2.0 200 OK", "Content-Length: lots"))

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            ReceivedMessage.parse(sip_text("SIP/2.0 200 OK", "garbage"))

    def test_fresh_record_per_parse(self):
        challenged = ReceivedMessage.parse(
            sip_text("SIP/2.0 401 Unauthorized", 'WWW-Authenticate: Digest realm="r", nonce="n"')
        )
        ok = ReceivedMessage.parse(sip_text("SIP/2.0 200 OK", "CSeq: 2 REGISTER"))
        assert challenged.has_challenge
        assert not ok.has_challenge
