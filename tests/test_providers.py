"""
Tests for provider-specific helpers: Graph HTTP client, IMAP message
parsing, Gmail MIME walking and LLM message conversion.
"""

import base64
from email.message import EmailMessage

import httpx
import pytest

from connectors.errors import UpstreamAPIError
from connectors.google import GmailClient, GoogleDocsClient
from connectors.outlook import OutlookClient, html_to_text
from connectors.yahoo import parse_message, xoauth2_string
from utils.llm_providers import ToolCall, _parse_arguments, to_anthropic_messages, to_openai_messages


def _outlook(handler):
    transport = httpx.MockTransport(handler)

    async def token_provider():
        return "graph-token"

    return OutlookClient(
        token_provider,
        http_client_factory=lambda **kw: httpx.AsyncClient(transport=transport, **kw),
    )


class TestOutlookClient:
    @pytest.mark.asyncio
    async def test_search_sends_bearer_and_consistency_header(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"value": [{"id": "m1", "subject": "Invoice"}]})

        messages = await _outlook(handler).search_emails("invoice", limit=5)

        assert messages == [{"id": "m1", "subject": "Invoice"}]
        request = seen[0]
        assert request.headers["Authorization"] == "Bearer graph-token"
        assert request.headers["ConsistencyLevel"] == "eventual"
        assert request.url.params["$search"] == '"invoice"'
        assert request.url.params["$top"] == "5"

    @pytest.mark.asyncio
    async def test_http_error_maps_to_upstream_error(self):
        client = _outlook(lambda request: httpx.Response(401, text="InvalidAuthenticationToken"))

        with pytest.raises(UpstreamAPIError) as excinfo:
            await client.test_connection()

        assert excinfo.value.status_code == 401
        assert "Microsoft Graph API error (401)" in str(excinfo.value)

    def test_html_body(self):
        message = {
            "body": {
                "contentType": "html",
                "content": "<html><style>p{}</style><p>Hello&nbsp;<b>there</b></p></html>",
            }
        }
        assert OutlookClient.body_text(message) == "Hello there"
        assert html_to_text("<script>x()</script>ok") == "ok"


class TestYahooParsing:
    def test_xoauth2_string(self):
        assert xoauth2_string("me@yahoo.com", "tok") == b"user=me@yahoo.com\x01auth=Bearer tok\x01\x01"

    def test_parse_message(self):
        msg = EmailMessage()
        msg["Subject"] = "Quarterly report"
        msg["From"] = "boss@example.com"
        msg["To"] = "me@yahoo.com"
        msg.set_content("Numbers   are\nup.")

        parsed = parse_message("42", msg.as_bytes(), b"\\Seen", include_body=True)

        assert parsed["id"] == "42"
        assert parsed["subject"] == "Quarterly report"
        assert parsed["is_read"] is True
        assert parsed["snippet"] == "Numbers are up."
        assert parsed["body"].startswith("Numbers")

    def test_parse_message_without_subject(self):
        msg = EmailMessage()
        msg.set_content("hi")
        parsed = parse_message("1", msg.as_bytes())
        assert parsed["subject"] == "(no subject)"
        assert parsed["is_read"] is False
        assert "body" not in parsed


class TestGoogleHelpers:
    def test_plain_text_body_from_nested_parts(self):
        encoded = base64.urlsafe_b64encode(b"plain body").decode()
        msg = {
            "payload": {
                "mimeType": "multipart/alternative",
                "headers": [{"name": "Subject", "value": "Hi"}],
                "parts": [
                    {"mimeType": "text/html", "body": {"data": "PGI-"}},
                    {"mimeType": "text/plain", "body": {"data": encoded}},
                ],
            }
        }
        assert GmailClient.get_plain_text_body(msg) == "plain body"
        assert GmailClient.get_header(msg, "subject") == "Hi"
        assert GmailClient.get_header(msg, "From") is None

    def test_document_text(self):
        document = {
            "body": {
                "content": [
                    {"paragraph": {"elements": [{"textRun": {"content": "Title\n"}}]}},
                    {"sectionBreak": {}},
                    {"paragraph": {"elements": [{"textRun": {"content": "Body"}}]}},
                ]
            }
        }
        assert GoogleDocsClient.document_text(document) == "Title\nBody"


class TestMessageConversion:
    def _history(self):
        call = ToolCall(id="t1", name="gmail_list_labels", arguments={})
        return [
            {"role": "user", "content": "labels?"},
            {"role": "assistant", "content": "", "tool_calls": [call]},
            {"role": "tool", "tool_call_id": "t1", "name": "gmail_list_labels", "content": "[]"},
        ]

    def test_openai(self):
        converted = to_openai_messages(self._history(), system="sys")
        assert converted[0] == {"role": "system", "content": "sys"}
        assert converted[2]["tool_calls"][0]["function"] == {"name": "gmail_list_labels", "arguments": "{}"}
        assert converted[3] == {"role": "tool", "tool_call_id": "t1", "content": "[]"}

    def test_anthropic(self):
        converted = to_anthropic_messages(self._history())
        assert converted[1]["content"] == [
            {"type": "tool_use", "id": "t1", "name": "gmail_list_labels", "input": {}}
        ]
        assert converted[2]["role"] == "user"
        assert converted[2]["content"][0]["tool_use_id"] == "t1"

    def test_parse_arguments(self):
        assert _parse_arguments("") == ({}, None)
        assert _parse_arguments('{"q": 1}') == ({"q": 1}, None)
        assert _parse_arguments("[1]")[1] == "Tool arguments must be a JSON object"
        assert "not valid JSON" in _parse_arguments("{oops")[1]
