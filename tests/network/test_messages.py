"""
Tests for relay frame parsing, session keys and outbound frame shapes.
"""

from __future__ import annotations

import json

import pytest

from ppclaw.network.messages import (
    BotDirectMessage,
    BotDmReply,
    DirectMessage,
    GroupMessage,
    GroupReply,
    Reply,
    ack,
    parse_frame,
    pong,
)


class TestParseFrame:
    def test_parses_text(self):
        assert parse_frame('{"type": "ping"}') == {"type": "ping"}

    def test_parses_bytes(self):
        assert parse_frame(b'{"type": "ping"}') == {"type": "ping"}

    @pytest.mark.parametrize(
        "raw",
        ["not json", "[1, 2]", '{"no_type": 1}', '{"type": 5}', b"\xff\xfe", None, 42],
    )
    def test_malformed_returns_none(self, raw):
        assert parse_frame(raw) is None


class TestSessionKeys:
    def test_direct_key(self):
        msg = DirectMessage.from_dict({"type": "message", "id": "m1", "senderId": "u42", "content": "hi"})
        assert msg.session_key == "ppclaw:dm:u42"

    def test_direct_key_without_sender(self):
        msg = DirectMessage.from_dict({"type": "message", "id": "m1"})
        assert msg.session_key == "ppclaw:dm:anonymous"

    def test_group_key(self):
        msg = GroupMessage.from_dict({"type": "group_message", "id": "g1", "groupId": "abc"})
        assert msg.session_key == "ppclaw:group:abc"

    def test_bot_key_without_task(self):
        msg = BotDirectMessage.from_dict({"type": "bot_dm", "id": "b1", "fromAgentId": "agent-7"})
        assert msg.session_key == "ppclaw:bot:agent-7"

    def test_bot_key_with_task(self):
        msg = BotDirectMessage.from_dict(
            {"type": "bot_dm", "id": "b1", "fromAgentId": "agent-7", "taskId": "t9"}
        )
        assert msg.session_key == "ppclaw:bot:agent-7:task:t9"

    def test_task_and_plain_keys_differ(self):
        plain = BotDirectMessage(from_agent_id="agent-7")
        tasked = BotDirectMessage(from_agent_id="agent-7", task_id="t9")
        assert plain.session_key != tasked.session_key

    def test_same_inputs_same_key(self):
        first = BotDirectMessage.from_dict({"id": "1", "fromAgentId": "agent-7", "taskId": "t9"})
        second = BotDirectMessage.from_dict({"id": "2", "fromAgentId": "agent-7", "taskId": "t9"})
        assert first.session_key == second.session_key

    def test_agent_id_cannot_forge_task_segment(self):
        forged = BotDirectMessage(from_agent_id="a2:task:t1")
        tasked = BotDirectMessage(from_agent_id="a2", task_id="t1")
        assert forged.session_key == "ppclaw:bot:a2%3Atask%3At1"
        assert forged.session_key != tasked.session_key

    def test_separator_escaping_is_unambiguous(self):
        literal = DirectMessage(sender_id="u%3A1")
        colon = DirectMessage(sender_id="u:1")
        assert literal.session_key == "ppclaw:dm:u%253A1"
        assert colon.session_key == "ppclaw:dm:u%3A1"

    def test_task_id_escaped(self):
        msg = BotDirectMessage(from_agent_id="a2", task_id="t1:x")
        assert msg.session_key == "ppclaw:bot:a2:task:t1%3Ax"

    def test_group_uuid_case_shares_session(self):
        upper = GroupMessage(group_id="3F2B6A1E-9C4D-4E8A-B7F1-0A2C5D6E7F80")
        lower = GroupMessage(group_id="3f2b6a1e-9c4d-4e8a-b7f1-0a2c5d6e7f80")
        assert upper.session_key == lower.session_key == "ppclaw:group:3f2b6a1e-9c4d-4e8a-b7f1-0a2c5d6e7f80"
        # The reply still echoes the id as the relay sent it
        assert upper.group_id == "3F2B6A1E-9C4D-4E8A-B7F1-0A2C5D6E7F80"

    def test_non_uuid_group_id_kept_verbatim(self):
        assert GroupMessage(group_id="Team-A").session_key == "ppclaw:group:Team-A"


class TestInboundParsing:
    def test_direct_metadata(self):
        msg = DirectMessage.from_dict(
            {"id": "m1", "senderId": "u1", "senderName": "Ann", "attachments": [{"url": "x"}]}
        )
        assert msg.attachments == [{"url": "x"}]
        assert msg.metadata() == {"chatType": "direct", "senderId": "u1", "senderName": "Ann"}

    def test_group_metadata_carries_notes(self):
        msg = GroupMessage.from_dict(
            {
                "id": "g1",
                "groupId": "grp",
                "groupName": "Team",
                "senderId": "u1",
                "senderType": "user",
                "isMentioned": True,
                "groupAgents": [{"id": "a1"}],
            }
        )
        meta = msg.metadata(group_notes="TODO: ship v2")
        assert meta["chatType"] == "group"
        assert meta["groupNotes"] == "TODO: ship v2"
        assert meta["isMentioned"] is True
        assert meta["groupAgents"] == [{"id": "a1"}]

    def test_non_list_attachments_ignored(self):
        assert DirectMessage.from_dict({"id": "m", "attachments": "nope"}).attachments == []


class TestOutbound:
    def test_pong_and_ack(self):
        assert pong() == {"type": "pong"}
        assert ack("m1") == {"type": "ack", "id": "m1"}

    def test_reply_omits_missing_attachments(self):
        assert Reply(reply_to="m1", content="hi").to_dict() == {
            "type": "reply",
            "replyTo": "m1",
            "content": "hi",
        }

    def test_group_reply(self):
        frame = GroupReply(reply_to="g1", group_id="grp", content="ok", attachments=[]).to_dict()
        assert frame == {
            "type": "group_reply",
            "replyTo": "g1",
            "groupId": "grp",
            "content": "ok",
            "attachments": [],
        }

    def test_bot_dm_reply_always_has_task_id(self):
        frame = BotDmReply(reply_to="b1", target_agent_id="agent-7", content="done").to_dict()
        assert frame["taskId"] is None
        assert json.loads(json.dumps(frame))["targetAgentId"] == "agent-7"
