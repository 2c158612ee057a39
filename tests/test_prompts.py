"""Tests for the system prompt builder."""

from __future__ import annotations

from datetime import UTC, datetime

from src.prompts import DEFAULT_ASSISTANT_NAME, build_system_prompt

NOW = datetime(2025, 3, 10, 18, 30, tzinfo=UTC)


class TestBuildSystemPrompt:
    def test_defaults(self):
        prompt = build_system_prompt(now=NOW)
        assert prompt.startswith(f"You are {DEFAULT_ASSISTANT_NAME}")
        assert "America/Phoenix" in prompt
        # 18:30 UTC is 11:30 in Phoenix (no DST)
        assert "11:30 AM" in prompt
        assert "Monday, March 10, 2025" in prompt

    def test_no_integrations_says_so(self):
        prompt = build_system_prompt(now=NOW)
        assert "No integrations are currently connected" in prompt
        assert "When using tools" not in prompt

    def test_capability_summary_adds_tool_guidelines(self):
        summary = "Connected integrations allow me to:\n- View and manage Asana tasks"
        prompt = build_system_prompt(capability_summary=summary, now=NOW)
        assert summary in prompt
        assert "Always confirm before sending emails" in prompt
        assert "No integrations" not in prompt

    def test_local_time_follows_timezone(self):
        prompt = build_system_prompt(timezone="Asia/Tokyo", now=NOW)
        assert "Asia/Tokyo" in prompt
        assert "Tuesday, March 11, 2025" in prompt
        assert "03:30 AM" in prompt

    def test_unknown_timezone_falls_back(self):
        prompt = build_system_prompt(timezone="Mars/Olympus_Mons", now=NOW)
        assert "America/Phoenix" in prompt
        assert "Mars" not in prompt

    def test_name_and_personality(self):
        prompt = build_system_prompt("Jarvis", "Formal and brief.", now=NOW)
        assert prompt.startswith("You are Jarvis,")
        assert prompt.endswith(
            "Additional personality/communication style notes from the user: Formal and brief."
        )
