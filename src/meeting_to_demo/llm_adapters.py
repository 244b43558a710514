from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field

from .errors import CapabilityUnavailableError
from .llm import get_chat_model, get_structured_chat_model
from .models import (
    PRD,
    ContextPacket,
    Entity,
    EntityField,
    Feature,
    FeatureBrief,
    PRDResult,
    Requirement,
    Screen,
    UIComponent,
    UIContract,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# LLM-facing response schemas
# ---------------------------------------------------------------------------

class _FeatureDraft(BaseModel):
    title: str
    description: str
    priority: Literal["low", "medium", "high"]


class _BriefDraft(BaseModel):
    title: str = Field(description="Overall feature set title")
    description: str = Field(description="High level context")
    features: list[_FeatureDraft]
    supporting_quotes: list[str] = Field(default_factory=list)


class _ContextDraft(BaseModel):
    project_context: str
    scope: str
    assumptions: list[str]
    open_questions: list[str]


class _RequirementDraft(BaseModel):
    description: str
    priority: Literal["must", "should", "could"]


class _ScreenDraft(BaseModel):
    name: str
    route: str
    description: str
    components: list[str]


class _EntityFieldDraft(BaseModel):
    name: str
    type: Literal["string", "number", "boolean", "date"]


class _EntityDraft(BaseModel):
    name: str
    fields: list[_EntityFieldDraft]


class _PRDDraft(BaseModel):
    title: str
    overview: str
    requirements: list[_RequirementDraft]
    acceptance_criteria: list[str]
    user_stories: list[str]
    screens: list[_ScreenDraft]
    entities: list[_EntityDraft] = Field(default_factory=list)


_BRIEF_SYSTEM_PROMPT = (
    "You are an expert product manager. Extract the feature requests from the provided text. "
    "Give every feature a short title, a one-paragraph description and a priority of high, medium or low. "
    "Quote the sentences that motivated each request verbatim in supporting_quotes."
)
_ENRICH_SYSTEM_PROMPT = (
    "You are a Senior Solutions Architect. Enrich the following feature brief with technical context, "
    "assumptions, and scope definition. Keep open questions concrete and answerable."
)
_PRD_SYSTEM_PROMPT = (
    "You are a world-class Product Manager. Based on the enriched context provided, write a PRD and a UI "
    "contract for a single-screen prototype: requirements with must/should/could priorities, testable "
    "acceptance criteria, user stories, the screens with their components, and the data entities the "
    "screens display."
)
_PROTOTYPE_SYSTEM_PROMPT = "You are v0, an expert UI engineer. Generate high-quality React code using Tailwind CSS."


class LLMBriefAdapter:
    """Brief formatting and context enrichment through OpenAI structured output."""

    def __init__(self, *, model_name: str, timeout: int = 120, max_retries: int = 2) -> None:
        self.model_name = model_name
        self.timeout = timeout
        self.max_retries = max_retries

    def _invoke(self, schema: type[BaseModel], system_prompt: str, user_content: str, capability: str) -> Any:
        try:
            model = get_structured_chat_model(
                model_name=self.model_name,
                schema=schema,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
            return model.invoke([("system", system_prompt), ("human", user_content)])
        except Exception as exc:  # noqa: BLE001
            raise CapabilityUnavailableError(capability, f"{type(exc).__name__}: {exc}") from exc

    def format_feature_brief(self, raw_text: str) -> FeatureBrief:
        draft = self._invoke(_BriefDraft, _BRIEF_SYSTEM_PROMPT, raw_text, "format_feature_brief")
        if not draft.features:
            raise CapabilityUnavailableError("format_feature_brief", "model returned no features")
        return FeatureBrief(
            source="text",
            context=draft.description,
            features=[
                Feature(title=item.title, description=item.description, priority=item.priority)
                for item in draft.features
            ],
            supporting_quotes=draft.supporting_quotes,
        )

    def enrich_context(self, brief: FeatureBrief) -> ContextPacket:
        draft = self._invoke(_ContextDraft, _ENRICH_SYSTEM_PROMPT, brief.model_dump_json(), "enrich_context")
        return ContextPacket(
            project_context=draft.project_context,
            scope=draft.scope,
            assumptions=draft.assumptions,
            open_questions=draft.open_questions,
        )


class LLMPRDAdapter:
    """PRD and UI contract generation through OpenAI structured output."""

    def __init__(self, *, model_name: str, timeout: int = 120, max_retries: int = 2) -> None:
        self.model_name = model_name
        self.timeout = timeout
        self.max_retries = max_retries

    def generate_prd(self, context: ContextPacket) -> PRDResult:
        try:
            model = get_structured_chat_model(
                model_name=self.model_name,
                schema=_PRDDraft,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
            draft = model.invoke([("system", _PRD_SYSTEM_PROMPT), ("human", context.model_dump_json())])
        except Exception as exc:  # noqa: BLE001
            raise CapabilityUnavailableError("generate_prd", f"{type(exc).__name__}: {exc}") from exc

        if not draft.title.strip():
            raise CapabilityUnavailableError("generate_prd", "model returned an empty PRD title")
        prd = PRD(
            title=draft.title,
            overview=draft.overview,
            requirements=[Requirement(description=item.description, priority=item.priority) for item in draft.requirements],
            acceptance_criteria=draft.acceptance_criteria,
            user_stories=draft.user_stories,
        )
        ui_contract = UIContract(
            screens=[
                Screen(
                    name=screen.name,
                    route=screen.route or "/",
                    description=screen.description,
                    components=[UIComponent(name=component) for component in screen.components],
                )
                for screen in draft.screens
            ],
            entities=[
                Entity(name=entity.name, fields=[EntityField(name=f.name, type=f.type) for f in entity.fields])
                for entity in draft.entities
            ],
        )
        return PRDResult(prd=prd, ui_contract=ui_contract)


class V0PrototypeAdapter:
    """Prototype generation against the OpenAI-compatible v0 completion API."""

    def __init__(self, *, model_name: str, base_url: str, timeout: int = 120, max_retries: int = 2) -> None:
        self.model_name = model_name
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries

    @staticmethod
    def build_prompt(ui_contract: UIContract, fixtures: str) -> str:
        screens = "\n\n".join(
            f"Feature: {screen.name}\n  Description: {screen.description}\n"
            f"  Components: {', '.join(component.name for component in screen.components)}"
            for screen in ui_contract.screens
        )
        return (
            "Build exactly this feature as a single, self-contained React + Tailwind CSS component:\n\n"
            f"{screens}\n\nData fixtures:\n{fixtures}\n\n"
            "IMPORTANT:\n"
            "- Focus on implementing EXACTLY the described feature with high visual quality\n"
            "- Make it a SINGLE self-contained component that demonstrates the feature\n"
            "- Do NOT generate boilerplate apps, multi-page routing, or generic templates\n"
            "- Return only the TSX code for the component"
        )

    def generate_prototype(self, ui_contract: UIContract, fixtures: str) -> str:
        if not ui_contract.screens:
            raise CapabilityUnavailableError("generate_prototype", "UI contract has no screens")
        prompt = self.build_prompt(ui_contract, fixtures)
        try:
            model = get_chat_model(
                model_name=self.model_name,
                timeout=self.timeout,
                max_retries=self.max_retries,
                api_key_env="V0_API_KEY",
                base_url=self.base_url,
            )
            response = model.invoke([("system", _PROTOTYPE_SYSTEM_PROMPT), ("human", prompt)])
        except Exception as exc:  # noqa: BLE001
            raise CapabilityUnavailableError("generate_prototype", f"{type(exc).__name__}: {exc}") from exc

        content = response.content if hasattr(response, "content") else response
        if isinstance(content, list):
            content = "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
        if not isinstance(content, str) or not content.strip():
            raise CapabilityUnavailableError("generate_prototype", "v0 returned no content")
        logger.info("v0 prototype generated (%d chars)", len(content))
        return content

