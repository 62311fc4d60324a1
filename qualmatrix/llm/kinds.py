"""Analysis kinds: the single table both the prompt composer and the validator read.

Each :class:`KindSpec` lists the top-level sections a model response must
contain.  The composer renders its output-schema block from that list and the
validator derives required and foreign keys from it, so the two cannot drift.

Project-type "modes" (patient journey, KOL mapping, ...) differ only in the
columns of the ``mode_analysis`` table; those live in :data:`MODE_TABLES`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

NOT_AVAILABLE = "Analysis not available"


class AnalysisKind(str, Enum):
    CONTENT = "content"
    PRO_ADVANCED = "pro_advanced"
    STANDARD = "standard"


class Container(str, Enum):
    """Shape of a section's payload."""

    QUESTIONS = "questions"  # list of matrix rows
    TABLE = "table"  # list of free-form row objects
    CONTENT = "content"  # one free-text string


@dataclass(frozen=True)
class SectionSpec:
    key: str
    title: str
    description: str
    container: Container
    # Columns for TABLE sections; empty means "depends on project type"
    columns: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class KindSpec:
    kind: AnalysisKind
    display_name: str
    sections: tuple[SectionSpec, ...]
    system_focus: str
    mission: str
    quote_length: str
    rules: tuple[str, ...] = field(default_factory=tuple)

    @property
    def section_keys(self) -> tuple[str, ...]:
        return tuple(s.key for s in self.sections)

    @property
    def matrix_section(self) -> SectionSpec:
        """The section that carries question × respondent rows."""
        for section in self.sections:
            if section.container is Container.QUESTIONS:
                return section
        raise LookupError(f"{self.kind.value} has no questions section")

    @property
    def fallback_section(self) -> SectionSpec:
        """Where raw model output goes when nothing structured survives."""
        for section in self.sections:
            if section.container is Container.CONTENT:
                return section
        return self.matrix_section

    def get_section(self, key: str) -> SectionSpec | None:
        for section in self.sections:
            if section.key == key:
                return section
        return None


# ---------------------------------------------------------------------------
# Matrix row schema: shared by every kind's questions section
# ---------------------------------------------------------------------------

ROW_FIELDS: tuple[tuple[str, str], ...] = (
    ("question_type", "Section or category from the discussion guide (e.g. 'Section A - Background')"),
    ("question", "Exact question text from the guide, or as asked in the transcript"),
    ("section", "Guide section title this question belongs to (optional)"),
    ("subsection", "Guide subsection title, if the guide has one (optional)"),
    ("respondents", "Object keyed by respondent identifier; omit respondents who did not address the question"),
)

CELL_FIELDS: tuple[tuple[str, str], ...] = (
    ("quote", "Verbatim text copied from the transcript; never paraphrased or invented"),
    ("summary", "2-3 sentences explaining what the respondent revealed and why it matters"),
    ("theme", "Specific theme capturing the 'why' and 'so what' of this answer"),
    ("confidence", "Number 0.0-1.0: how clearly this answer maps to the question (optional)"),
)

_STRATEGIC_COLUMNS: tuple[tuple[str, str], ...] = (
    ("theme", "Specific theme from the analysis"),
    ("rationale", "Why this theme matters, grounded in transcript content"),
    ("supporting_quotes", "Verbatim quotes supporting this theme"),
)

_CONTENT_SECTIONS = (
    SectionSpec(
        key="content_analysis",
        title="Discussion Guide-First Content Analysis",
        description="Matrix analysis following the discussion guide structure",
        container=Container.QUESTIONS,
    ),
)


def _fmr_sections(title: str, description: str) -> tuple[SectionSpec, ...]:
    return (
        SectionSpec(
            key="fmr_dish",
            title=title,
            description=description,
            container=Container.QUESTIONS,
        ),
        SectionSpec(
            key="mode_analysis",
            title="Mode Analysis",
            description="Mode-specific analysis",
            container=Container.TABLE,
        ),
        SectionSpec(
            key="strategic_themes",
            title="Strategic Themes",
            description="Strategic insights and recommendations",
            container=Container.TABLE,
            columns=_STRATEGIC_COLUMNS,
        ),
        SectionSpec(
            key="summary",
            title="Summary",
            description="Executive summary",
            container=Container.CONTENT,
        ),
    )


_COMMON_RULES = (
    "Every quote MUST be verbatim text copied from the transcripts below.",
    "Never use placeholder text such as 'No specific quote available', "
    "'No quote available' or 'General Response'.",
    "Never invent respondents, questions or quotes that are not in the transcripts.",
    "Use the same respondent identifier for the same person in every row.",
    "Leave a respondent out of a question's respondents object when they did not "
    "address it; do not fill the gap with generic text.",
    "Return ONLY the JSON object: no markdown, no code fences, no text before or after.",
)

KIND_SPECS: dict[AnalysisKind, KindSpec] = {
    AnalysisKind.CONTENT: KindSpec(
        kind=AnalysisKind.CONTENT,
        display_name="Discussion Guide-First Content Analysis",
        sections=_CONTENT_SECTIONS,
        system_focus=(
            "You specialise in Discussion Guide-First Content Analysis: you map every "
            "transcript response to its discussion guide question for every respondent, "
            "extracting verbatim quotes, summaries and specific themes. This analysis is "
            "independent of project type."
        ),
        mission=(
            "Build a content-analysis matrix that follows the discussion guide order "
            "exactly, with one row per guide question and one cell per respondent."
        ),
        quote_length="50-150 words",
        rules=_COMMON_RULES
        + (
            "Include every guide question, in guide order, even when nobody answered it.",
            "Preserve the Section → Subsection → Question hierarchy.",
        ),
    ),
    AnalysisKind.PRO_ADVANCED: KindSpec(
        kind=AnalysisKind.PRO_ADVANCED,
        display_name="Pro Advanced Analysis",
        sections=_fmr_sections(
            "Pro Advanced Analysis", "Advanced analysis independent of project type"
        ),
        system_focus=(
            "You specialise in Pro Advanced Analysis: deep, project-type-independent "
            "insight extraction returned as an fmr_dish question matrix plus strategic "
            "themes and an executive summary."
        ),
        mission=(
            "Extract REAL content from the transcripts: actual interviewer questions "
            "and actual respondent answers."
        ),
        quote_length="30-100 words",
        rules=_COMMON_RULES
        + ("Always include the fmr_dish questions array, even when it is empty.",),
    ),
    AnalysisKind.STANDARD: KindSpec(
        kind=AnalysisKind.STANDARD,
        display_name="FMR Dish Analysis",
        sections=_fmr_sections(
            "FMR Dish Analysis", "Qualitative insights from actual transcript content"
        ),
        system_focus=(
            "You extract insights from transcripts according to the project's research "
            "mode and return an fmr_dish question matrix, a mode-specific table, "
            "strategic themes and an executive summary."
        ),
        mission=(
            "Extract REAL content from the transcripts and organise it for the "
            "project's research mode."
        ),
        quote_length="30-100 words",
        rules=_COMMON_RULES
        + ("Always include the fmr_dish questions array, even when it is empty.",),
    ),
}

ALL_SECTION_KEYS: frozenset[str] = frozenset(
    key for spec in KIND_SPECS.values() for key in spec.section_keys
)

_KIND_ALIASES: dict[str, AnalysisKind] = {
    "universal_content_analysis": AnalysisKind.CONTENT,
    "content_analysis": AnalysisKind.CONTENT,
    "guide": AnalysisKind.CONTENT,
    "pro": AnalysisKind.PRO_ADVANCED,
    "advanced": AnalysisKind.PRO_ADVANCED,
    "fmr": AnalysisKind.STANDARD,
    "basic": AnalysisKind.STANDARD,
    "project_type": AnalysisKind.STANDARD,
}


def parse_kind(value: str | AnalysisKind) -> AnalysisKind:
    """Resolve a kind name or alias.

    Raises:
        ValueError: If the name is not recognised.
    """
    if isinstance(value, AnalysisKind):
        return value
    name = value.strip().lower().replace("-", "_")
    try:
        return AnalysisKind(name)
    except ValueError:
        pass
    if name in _KIND_ALIASES:
        return _KIND_ALIASES[name]
    valid = sorted([k.value for k in AnalysisKind] + list(_KIND_ALIASES))
    raise ValueError(f"Unknown analysis kind: {value}. Valid kinds: {', '.join(valid)}")


def get_kind_spec(kind: str | AnalysisKind) -> KindSpec:
    return KIND_SPECS[parse_kind(kind)]


def foreign_section_keys(kind: str | AnalysisKind) -> frozenset[str]:
    """Top-level keys that belong to some other kind's schema."""
    return ALL_SECTION_KEYS - frozenset(get_kind_spec(kind).section_keys)


# ---------------------------------------------------------------------------
# Mode-specific tables (standard kind)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModeTable:
    label: str
    columns: tuple[tuple[str, str], ...]


_MESSAGE_COLUMNS = (
    ("item", "Message or material tested"),
    ("reaction", "Initial reaction"),
    ("emotion", "Emotional response"),
    ("quote", "Supporting verbatim quote"),
    ("suggestion", "Improvement suggestion"),
)

MODE_TABLES: dict[str, ModeTable] = {
    "customer_journey": ModeTable("Customer Journey", (
        ("stage", "Awareness, Consideration, Initiation, Adoption, Adherence"),
        ("action", "Specific action taken"),
        ("emotion", "Emotional state"),
        ("touchpoint", "Interaction point"),
        ("friction", "What made this stage difficult"),
        ("quote", "Supporting verbatim quote"),
        ("journey_flow", "Did they skip, reverse, or loop stages"),
        ("duration", "Approximate time spent in the stage"),
        ("trigger", "What prompted the transition to the next stage"),
        ("support_system", "Who helped them emotionally or practically"),
        ("info_source", "Where they got their information"),
        ("barrier_overcome", "How they overcame challenges"),
        ("clinical_relevance", "Implications for the therapy area"),
    )),
    "patient_journey": ModeTable("Patient Journey", (
        ("journey_stage", "Journey stage name"),
        ("description", "Experience at this stage"),
        ("emotion", "Emotional state"),
        ("quote", "Supporting verbatim"),
        ("barrier_friction", "What made it difficult"),
        ("coping_support", "How they coped or who helped"),
        ("system_interaction", "Healthcare system touchpoints"),
        ("identity_impact", "Impact on self-perception"),
    )),
    "diagnostic_pathway": ModeTable("Diagnostic Pathway", (
        ("step_type", "Type of diagnostic step"),
        ("action_taken", "What was done at this step"),
        ("delay", "Was this step delayed (Y/N)"),
        ("emotion", "Emotional state"),
        ("trigger", "What prompted this step"),
        ("test_assessment", "Tests or assessments performed"),
        ("clinical_impact", "Consequences of this step"),
        ("system_friction", "System-level challenges"),
        ("quote", "Supporting verbatim quote"),
    )),
    "persona_mapping": ModeTable("Persona Mapping", (
        ("persona_archetype", "Summary label for this persona"),
        ("core_traits", "How they view themselves"),
        ("motivators", "What drives their decisions"),
        ("barriers", "What holds them back"),
        ("beliefs", "About healthcare, treatment, system, disease"),
        ("risk_perception", "Risk-averse, risk-tolerant, neutral"),
        ("communication_style", "Direct, data-driven, emotional, avoidant"),
        ("decision_trigger", "What causes action"),
        ("trusted_channels", "HCPs, peers, internet, pharma reps, journals"),
        ("emotional_anchor", "Guilt, pride, hope, denial, shame"),
        ("role_in_ecosystem", "Patient, influencer, decision-maker, caregiver"),
        ("supporting_quotes", "Up to 3 verbatims justifying the insight"),
    )),
    "treatment_decision": ModeTable("Treatment Decision", (
        ("respondent_id", "Respondent identifier"),
        ("treatment_considered", "Treatments discussed or evaluated"),
        ("final_decision", "What they chose and why"),
        ("selection_criteria", "Factors that drove the decision"),
        ("emotional_tradeoffs", "Feelings weighed or suppressed"),
        ("influencers", "Who impacted the decision and how"),
        ("barriers", "What blocked or delayed the decision"),
        ("trigger_point", "Moment that triggered action"),
        ("decision_confidence", "How they feel about the choice in hindsight"),
        ("supporting_quotes", "2-3 verbatim quotes"),
    )),
    "unmet_needs": ModeTable("Unmet Needs", (
        ("respondent_id", "Respondent identifier"),
        ("need_type", "Clinical, Emotional, Logistical, Educational, Systemic, Financial, Digital"),
        ("theme", "Core topic summary"),
        ("details", "What is missing and what was expected"),
        ("impact", "Consequence of this gap"),
        ("urgency", "High/Medium/Low based on tone and repetition"),
        ("suggested_fix", "Solution proposed by the respondent, if any"),
        ("quote", "Direct quote as evidence"),
    )),
    "behavioral_drivers": ModeTable("Behavioral Drivers", (
        ("behavior", "Healthcare action or inaction described"),
        ("influencer", "Who or what shapes the behavior"),
        ("belief", "Core belief driving the behavior"),
        ("trigger", "Moment, phrase or event causing the behavior"),
        ("quote", "Exact language supporting the insight"),
        ("emotion", "Underlying emotional tone"),
        ("resistance_pattern", "Why they reject or hesitate"),
        ("social_lens", "Peer, family or cultural influence"),
        ("behavioral_shift", "Did the behavior change later and why"),
        ("barrier_type", "Cognitive, emotional, logistical, systemic"),
        ("impact_on_care", "Effect on adherence or outcomes"),
        ("communication_need", "Message that would help shift the behavior"),
    )),
    "kol_mapping": ModeTable("KOL Mapping", (
        ("theme", "Strategic topic or debate area"),
        ("perspective", "What the KOL thinks"),
        ("rationale", "Why they think this"),
        ("quote", "Direct support for the insight"),
        ("implication", "Meaning for development or commercialisation"),
        ("level", "Local, national or global relevance"),
        ("consensus", "Outlier or widely held among peers"),
        ("future_outlook", "Their forecast or vision"),
        ("unmet_need_highlighted", "Explicit gap noted, if any"),
        ("role_framing", "Academic, trialist, policy shaper, educator"),
    )),
    "product_positioning": ModeTable("Product Positioning", (
        ("dimension", "Efficacy, ease of use, safety, emotional fit, value"),
        ("perception", "What respondents think about the product"),
        ("comparison", "How they compare it to alternatives"),
        ("evidence_reason", "Why they think this"),
        ("quote", "Verbatim illustrating the perception"),
        ("market_fit", "Ideal user, situation or setting"),
        ("objections", "Stated barriers, concerns, hesitations"),
        ("suggested_positioning", "How the product should be framed"),
        ("strategic_implication", "Meaning for sales and messaging"),
        ("differentiators", "What stands out most"),
    )),
    "product_potential": ModeTable("Product Potential", (
        ("respondent_type", "HCP/Patient/KOL/Payer"),
        ("interest_level", "High/Medium/Low"),
        ("intent_to_use", "Yes/No/Conditional"),
        ("ideal_use_case", "Patient type or situation that fits best"),
        ("perceived_benefits", "Value the product offers"),
        ("practical_limitations", "What could hinder real-world usage"),
        ("quote", "Verbatim justifying potential or concerns"),
        ("conditions_for_adoption", "What must change to increase use"),
        ("fit_with_practice", "Seamless or disruptive"),
        ("clinical_outcome_belief", "Will this improve results and why"),
        ("innovation_openness", "Risk appetite for new solutions"),
        ("market_readiness", "Do they think others are ready"),
        ("strategic_implication", "Meaning for positioning, education, launch"),
    )),
    "market_potential": ModeTable("Market Potential", (
        ("respondent_type", "KOL/HCP/Patient/Payer"),
        ("need_recognition", "Is the need well understood"),
        ("enthusiasm", "Optimistic/hesitant/indifferent"),
        ("market_timing", "Right time/premature/too late"),
        ("adoption_drivers", "What will accelerate uptake"),
        ("adoption_barriers", "What could block market entry"),
        ("competitors", "Who else is solving this"),
        ("system_fit", "Can the healthcare system support this"),
        ("education_need", "What stakeholders need to know"),
        ("reimbursement", "Payer willingness signals"),
        ("cultural_frictions", "Attitudinal blockers or trust gaps"),
        ("quote", "Verbatim proof of belief or concern"),
        ("risk_level", "Low/Medium/High launch risk"),
        ("acceleration_suggestions", "What would enable entry"),
        ("strategic_insight", "Meaning for go-to-market planning"),
    )),
    "market_understanding": ModeTable("Market Understanding", (
        ("respondent_type", "HCP/Patient/KOL/Payer"),
        ("terminology_fluency", "Accurate/Mixed/Poor use of terms"),
        ("category_understanding", "Do they grasp where the product fits"),
        ("treatment_path_clarity", "Do they understand the patient journey"),
        ("stakeholder_awareness", "Do they understand who does what"),
        ("policy_reimbursement_insight", "Do they understand payer involvement"),
        ("misunderstandings", "Confusion or outdated information"),
        ("mental_model", "How they frame the product space"),
        ("quote", "Exact transcript quotes supporting findings"),
        ("knowledge_level", "High/Medium/Low"),
        ("communication_implications", "What needs clarification"),
    )),
    "launch_readiness": ModeTable("Launch Readiness", (
        ("stakeholder", "HCP/Patient/Payer type"),
        ("awareness", "Familiar/Unfamiliar with the product"),
        ("confidence", "High/Medium/Low in using the product"),
        ("training_needs", "What they need to feel ready"),
        ("support_materials", "Brochures, videos, guides needed"),
        ("infrastructure_gaps", "Systems, tools, logistics delays"),
        ("timing_fit", "Good time/Not yet/Too late"),
        ("adoption_concerns", "Side effects, workflow, adherence issues"),
        ("early_adopter_profile", "Who might use it first and why"),
        ("enablers", "What would speed up success"),
        ("quote", "Exact quotes showing readiness or resistance"),
        ("launch_probability", "Low/Medium/High success likelihood"),
        ("next_steps", "Concrete actions needed"),
    )),
    "message_testing": ModeTable("Message Testing", _MESSAGE_COLUMNS),
    "concept_testing": ModeTable("Concept Testing", _MESSAGE_COLUMNS),
    "material_testing": ModeTable("Material Testing", _MESSAGE_COLUMNS),
    "visual_claims_testing": ModeTable("Visual Claims Testing", _MESSAGE_COLUMNS),
    "story_flow": ModeTable("Story Flow", _MESSAGE_COLUMNS),
    "device_messaging": ModeTable("Device Messaging", _MESSAGE_COLUMNS),
    "co_creation": ModeTable("Co-Creation", _MESSAGE_COLUMNS),
    "touchpoint_experience": ModeTable("Touchpoint Experience", (
        ("channel", "Webinar/Field Rep/App/Email/Phone/SMS/Portal"),
        ("role", "Education/support/sales/access/training"),
        ("experience", "Clear/confusing/repetitive/frustrating/efficient"),
        ("emotion", "Trust/anxiety/relief/annoyance/confusion/appreciation"),
        ("barrier", "Navigation/access/relevance/tech/tone"),
        ("suggestion", "What could improve the touchpoint"),
        ("quote", "Verbatim phrases reflecting tone and insight"),
        ("engagement_impact", "Did it help or hinder engagement"),
        ("follow_up_need", "Did they want more info or a different format"),
    )),
    "digital_usability": ModeTable("Digital Usability", (
        ("tool", "Portal/app/dashboard/chatbot/website"),
        ("purpose", "Education/monitoring/support/appointment/tracking"),
        ("usability", "Easy/confusing/error-prone/slow/intuitive"),
        ("navigation", "Logical/overwhelming/poorly labelled"),
        ("trust_security", "Comfort with data privacy and login"),
        ("accessibility", "Device compatibility, screen reader, load times"),
        ("emotion", "Frustration/trust/anxiety/relief/empowerment"),
        ("improvement", "UX suggestions in the user's words"),
        ("quote", "Direct phrases expressing the experience"),
        ("impact", "Did the tool help or hinder the healthcare journey"),
        ("support", "Onboarding, tutorials, human help needs"),
    )),
}

GENERAL_MODE_TABLE = ModeTable("General Analysis", (
    ("category", "Analysis category"),
    ("finding", "Key finding"),
    ("evidence", "Supporting evidence"),
    ("quote", "Supporting verbatim quote"),
))


def mode_table_for(project_type: str) -> ModeTable:
    return MODE_TABLES.get(project_type.strip().lower(), GENERAL_MODE_TABLE)


# ---------------------------------------------------------------------------
# Schema example for the prompt
# ---------------------------------------------------------------------------


def _row_example(quote_length: str) -> dict[str, Any]:
    row: dict[str, Any] = {name: desc for name, desc in ROW_FIELDS[:-1]}
    cell = {name: desc for name, desc in CELL_FIELDS}
    cell["quote"] = f"{cell['quote']} ({quote_length})"
    row["respondents"] = {"<Respondent-ID>": cell}
    return row


def schema_example(kind: str | AnalysisKind, project_type: str = "") -> dict[str, Any]:
    """Build the JSON example shown to the model for *kind*."""
    spec = get_kind_spec(kind)
    example: dict[str, Any] = {}
    for section in spec.sections:
        block: dict[str, Any] = {"title": section.title, "description": section.description}
        if section.container is Container.QUESTIONS:
            block["questions"] = [_row_example(spec.quote_length)]
        elif section.container is Container.TABLE:
            columns = section.columns or mode_table_for(project_type).columns
            block["table"] = [{name: desc for name, desc in columns}]
        else:
            block["content"] = "300-600 word summary based on actual transcript insights"
        example[section.key] = block
    return example
