"""
src/molt/guidance.py
────────────────────
Operator guidance for each molt stage.

compose_guidance() joins three parts with " • ":
  base instruction for the state · risk modifier · care-window time left
"""
from __future__ import annotations

from datetime import timedelta

from config.alerts import AlertSeverity
from src.data.models import MoltState

SEPARATOR = " • "

STATE_NAMES: dict[MoltState, str] = {
    MoltState.NONE: "Normal",
    MoltState.PREMOLT: "Pre-molt",
    MoltState.ECDYSIS: "Active Molting",
    MoltState.POSTMOLT_RISK: "Post-molt Risk",
    MoltState.POSTMOLT_SAFE: "Post-molt Safe",
}

BASE_GUIDANCE: dict[MoltState, str] = {
    MoltState.NONE: "Monitor normally, maintain stable conditions",
    MoltState.PREMOLT: "Dim lighting, increase humidity, provide isolation substrate",
    MoltState.ECDYSIS: "DO NOT DISTURB - Isolate completely, suspend feeding, maintain aeration",
    MoltState.POSTMOLT_RISK: "Maintain isolation, dim lights, no handling or feeding",
    MoltState.POSTMOLT_SAFE: "Continue isolation, offer calcium sources, monitor shell hardening",
}

RISK_MODIFIERS: dict[AlertSeverity, dict[MoltState, str]] = {
    AlertSeverity.WARNING: {
        MoltState.NONE: "Check water quality",
        MoltState.PREMOLT: "Monitor closely for state change",
        MoltState.ECDYSIS: "Increase monitoring frequency",
        MoltState.POSTMOLT_RISK: "Extra vigilance required",
        MoltState.POSTMOLT_SAFE: "Monitor for complications",
    },
    AlertSeverity.CRITICAL: {
        MoltState.NONE: "URGENT: Address water quality immediately",
        MoltState.PREMOLT: "URGENT: Prepare isolation immediately",
        MoltState.ECDYSIS: "CRITICAL: Absolute isolation essential",
        MoltState.POSTMOLT_RISK: "CRITICAL: Maximum protection required",
        MoltState.POSTMOLT_SAFE: "URGENT: Check for molt complications",
    },
}

EMERGENCY_GUIDANCE: dict[MoltState, str] = {
    MoltState.NONE: "Stabilize water parameters immediately",
    MoltState.PREMOLT: "Prepare isolation chamber now - molting imminent",
    MoltState.ECDYSIS: "EMERGENCY: Complete isolation required - no disturbance whatsoever",
    MoltState.POSTMOLT_RISK: "EMERGENCY: Crab extremely vulnerable - maintain absolute isolation",
    MoltState.POSTMOLT_SAFE: "Check for stuck molt or injury - may need intervention",
}

CARE_ACTIONS: dict[MoltState, list[str]] = {
    MoltState.NONE: [
        "Maintain stable water parameters",
        "Provide varied diet with calcium",
        "Monitor for pre-molt signs",
    ],
    MoltState.PREMOLT: [
        "Reduce lighting to minimum",
        "Provide deep substrate for burrowing",
        "Remove other crabs from vicinity",
        "Stop handling completely",
    ],
    MoltState.ECDYSIS: [
        "Absolute isolation - no disturbance",
        "Keep temperature inside the configured range",
        "Ensure adequate aeration without direct flow",
        "Do not feed",
        "Monitor from distance only",
    ],
    MoltState.POSTMOLT_RISK: [
        "Continue complete isolation",
        "Keep lighting very dim",
        "No feeding for first 24-48 hours",
        "Avoid any vibrations or noise",
        "Check aeration is gentle",
    ],
    MoltState.POSTMOLT_SAFE: [
        "Maintain isolation from other crabs",
        "Offer calcium-rich foods",
        "Monitor shell hardening progress",
        "Gradually return to normal lighting",
        "Watch for signs of incomplete molt",
    ],
}


def state_display_name(state: MoltState) -> str:
    return STATE_NAMES[state]


def format_remaining(remaining: timedelta | None) -> str:
    """'5h 30m remaining', '12m remaining', '< 1m remaining' or 'Care window expired'."""
    if remaining is None:
        return ""
    total_minutes = int(remaining.total_seconds() // 60)
    if remaining <= timedelta(0):
        return "Care window expired"
    hours, minutes = divmod(total_minutes, 60)
    if hours >= 1:
        return f"{hours}h {minutes}m remaining"
    if minutes >= 1:
        return f"{minutes}m remaining"
    return "< 1m remaining"


def compose_guidance(
    state: MoltState,
    risk: AlertSeverity,
    remaining: timedelta | None = None,
) -> str:
    parts = [BASE_GUIDANCE[state]]
    modifier = RISK_MODIFIERS.get(risk, {}).get(state, "")
    if modifier:
        parts.append(modifier)
    time_left = format_remaining(remaining)
    if time_left:
        parts.append(time_left)
    return SEPARATOR.join(parts)


def short_guidance(state: MoltState, risk: AlertSeverity) -> str:
    return compose_guidance(state, risk).split(SEPARATOR)[0]


def emergency_guidance(state: MoltState) -> str:
    return EMERGENCY_GUIDANCE[state]


def care_actions(state: MoltState) -> list[str]:
    return list(CARE_ACTIONS[state])
