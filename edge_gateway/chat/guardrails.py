"""Mandatory system instructions injected ahead of every outbound conversation."""

import json
from dataclasses import dataclass

from edge_gateway.chat.messages import enforce_limit
from edge_gateway.models.chat import ChatMessage, GuardrailContext


@dataclass(frozen=True)
class GuardrailProfile:
    """Wording for one provider's guardrail.

    ``preamble`` is fixed and cannot be overridden by callers. The templates
    receive a single positional value.
    """

    preamble: str
    arabic_locale: str
    english_locale: str
    other_locale_template: str
    default_locale: str
    intent_template: str
    schema_template: str
    context_header: str

    def describe_locale(self, locale: str | None) -> str:
        if not locale:
            return self.default_locale
        lowered = locale.lower()
        if lowered.startswith("ar"):
            return self.arabic_locale
        if lowered.startswith("en"):
            return self.english_locale
        return self.other_locale_template.format(locale)


COPILOT_PROFILE = GuardrailProfile(
    preamble=(
        "You are NPHIES Edge Copilot. Guide the user through Saudi NPHIES Taameen "
        "workflows. Ask clarifying questions if any identifiers are missing before "
        "generating payloads.\n\n"
        "Whenever possible, include a compact JSON snippet with the fields intent, "
        "patientId, coverageId, claimId, recommendedEndpoint, and nextSteps. If "
        "information is unavailable, leave the field as null."
    ),
    arabic_locale="Respond in Modern Standard Arabic unless referencing code identifiers.",
    english_locale="Respond in English and use short, actionable sentences.",
    other_locale_template="Match the user's locale ({}).",
    default_locale="Respond in the user's language.",
    intent_template="Primary intent: {}.",
    schema_template="Follow this schema strictly: {}.",
    context_header="Reference context (do not restate identifiers unnecessarily):",
)

ASSISTANT_PROFILE = GuardrailProfile(
    preamble=(
        "You are NPHIES Edge Assistant, an expert helper for Saudi Arabia's National "
        "Platform for Health Information Exchange (NPHIES). Scope: eligibility "
        "verification, claims, pre-authorization and payment notices expressed as "
        "NPHIES FHIR R4 resources. Decline requests outside this scope.\n\n"
        "Always include a structured JSON snippet when generating FHIR payloads, with "
        "the fields intent (eligibility|claim|payment|audit), patientId, coverageId, "
        "claimId, recommendedEndpoint, nextSteps and fhirPayload. Use null for any "
        "field you cannot determine; never invent identifiers."
    ),
    arabic_locale=(
        "Respond in Modern Standard Arabic, but keep technical terms and code "
        "identifiers in English."
    ),
    english_locale="Respond in clear, professional English with technical precision.",
    other_locale_template=(
        "Respond in the user's locale ({}) while keeping technical terms in English."
    ),
    default_locale="Respond in the user's preferred language.",
    intent_template="Current workflow focus: {}.",
    schema_template="Schema requirements: {}.",
    context_header="Current conversation context:",
)


class GuardrailComposer:
    def __init__(self, profile: GuardrailProfile):
        self._profile = profile

    @property
    def profile(self) -> GuardrailProfile:
        return self._profile

    def compose(self, context: GuardrailContext) -> str:
        profile = self._profile
        sections = [profile.preamble, profile.describe_locale(context.locale)]
        if context.intent:
            sections.append(profile.intent_template.format(context.intent))
        if context.schema_hint:
            sections.append(profile.schema_template.format(context.schema_hint))
        if context.context:
            serialized = json.dumps(context.context, indent=2, ensure_ascii=False, default=str)
            sections.append(f"{profile.context_header}\n{serialized}")
        return "\n\n".join(sections)

    def inject(
        self,
        messages: list[ChatMessage],
        context: GuardrailContext,
        max_messages: int,
    ) -> list[ChatMessage]:
        """Place the guardrail at index 0, then re-apply the message limit."""
        guardrail = self.compose(context)
        if messages and messages[0].role == "system":
            merged = ChatMessage(
                role="system",
                content=f"{guardrail}\n\n{messages[0].content}",
            )
            injected = [merged, *messages[1:]]
        else:
            injected = [ChatMessage(role="system", content=guardrail), *messages]
        return enforce_limit(injected, max_messages)
