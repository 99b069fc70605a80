"""CIP DomainConfig for the dealership CRM domain, plus env-driven policies."""

from __future__ import annotations

import os

from cip_protocol import DomainConfig

from dealer_mcp.policy import DEFAULT_SHOWROOM_TIMEZONE, BusinessHours, SlaPolicy

DEALER_CRM_DOMAIN_CONFIG = DomainConfig(
    name="dealership_crm",
    display_name="Dealer CRM Command Center",
    system_prompt=(
        "You are a specialist sales-operations analyst within a multi-agent system. "
        "Your response will be returned to an orchestrating AI assistant that is "
        "supporting dealership sales managers and reps. Write clear, "
        "information-dense analysis for that assistant to relay. Be concise: lead "
        "with the most urgent action, then supporting numbers. Every figure you cite "
        "must come from the supplied CRM data; never invent leads, deals, or "
        "metrics. Respect the scaffold's length guidance strictly. "
        "You understand multi-rooftop dealership operations, first-response SLAs, "
        "pipeline stage gates, and TCPA-style consent requirements, and you never "
        "suggest bypassing a stage gate or contacting a customer without consent."
    ),
    default_scaffold_id="general_advice",
    data_context_label="CRM Data",
    prohibited_indicators={
        "financial_guarantees": (
            "you will definitely get approved",
            "i guarantee your rate will be",
            "your monthly payment will be exactly",
            "guaranteed approval",
        ),
        "consent_shortcuts": (
            "text them anyway",
            "skip the consent",
            "consent is not needed",
            "no need to verify consent",
        ),
        "pressure_tactics": (
            "tell them the price goes up tomorrow",
            "say another buyer is interested",
            "this offer expires tonight",
        ),
        "gate_bypass": (
            "mark it closed won anyway",
            "skip the checklist",
            "force the stage change",
        ),
    },
    regex_guardrail_policies={
        "apr_promises": r"(?i)your\s+apr\s+(?:will|is\s+going\s+to)\s+be\s+\d",
        "approval_promises": (
            r"(?i)(?:you|they|the\s+customer)\s+(?:will|are\s+going\s+to)\s+"
            r"(?:definitely\s+)?(?:be\s+)?approved"
        ),
    },
    redaction_message="[Removed: contains prohibited dealership sales guidance]",
)


def showroom_timezone() -> str:
    """IANA zone for showroom wall time: ``DEALER_CRM_TIMEZONE`` or the default."""
    return os.environ.get("DEALER_CRM_TIMEZONE", "").strip() or DEFAULT_SHOWROOM_TIMEZONE


def business_hours_from_env() -> BusinessHours:
    return BusinessHours(timezone=showroom_timezone())


def sla_policy_from_env() -> SlaPolicy:
    return SlaPolicy(business_hours=business_hours_from_env())
