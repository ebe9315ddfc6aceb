"""Decoder-generation workflow: step sequence, manufacturer table and state.

The step order is fixed for every manufacturer; a manufacturer profile only
decides which of those steps it visits and which remote function produces the
artifact for each of them.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class WorkflowStep(str, Enum):
    SELECT_MANUFACTURER = "select_manufacturer"
    UPLOAD_DOC = "upload_doc"
    EXTRACTING = "extracting"
    VIEW_DOC = "view_doc"
    STEP1_COMPOSITE = "step1_composite"
    STEP2_RULES = "step2_rules"
    STEP3_EXAMPLES = "step3_examples"
    STEP4_RECONCILE = "step4_reconcile"
    STEP5_DECODER = "step5_decoder"
    STEP6_REPAIR = "step6_repair"
    STEP7_FEEDBACK = "step7_feedback"

    @property
    def position(self) -> int:
        return WORKFLOW_STEPS.index(self)


WORKFLOW_STEPS: tuple[WorkflowStep, ...] = tuple(WorkflowStep)
LAST_STEP_INDEX = len(WORKFLOW_STEPS) - 1

STEP_TITLES: dict[WorkflowStep, str] = {
    WorkflowStep.SELECT_MANUFACTURER: "Select Manufacturer",
    WorkflowStep.UPLOAD_DOC: "Upload PDF",
    WorkflowStep.EXTRACTING: "Extracting...",
    WorkflowStep.VIEW_DOC: "Review Documentation",
    WorkflowStep.STEP1_COMPOSITE: "1. Composite Spec",
    WorkflowStep.STEP2_RULES: "2. Rules Block",
    WorkflowStep.STEP3_EXAMPLES: "3. Examples",
    WorkflowStep.STEP4_RECONCILE: "4. Reconcile",
    WorkflowStep.STEP5_DECODER: "5. Decoder",
    WorkflowStep.STEP6_REPAIR: "6. Auto-Repair",
    WorkflowStep.STEP7_FEEDBACK: "7. Feedback",
}


class Manufacturer(str, Enum):
    MILESIGHT = "milesight"
    DECENTLAB = "decentlab"
    DRAGINO = "dragino"
    WATTECO = "watteco"
    GENERIC = "generic"
    ENGINKO = "enginko"


class AcquisitionMode(str, Enum):
    PDF = "pdf"
    TEXT = "text"


@dataclass(frozen=True, slots=True)
class RequestField:
    """One key of a remote request body, read from an artifact attribute."""

    key: str
    source: str
    optional: bool = False


@dataclass(frozen=True, slots=True)
class ResponseField:
    """Copies ``name`` from a remote response into artifact attribute ``target``."""

    name: str
    target: str
    required: bool = True


@dataclass(frozen=True, slots=True)
class GenerationAction:
    """A single remote generation call.

    ``step`` is ``None`` for in-place actions that rewrite an artifact without
    moving the step pointer.
    """

    name: str
    endpoint: str
    request: tuple[RequestField, ...]
    response: tuple[ResponseField, ...]
    step: WorkflowStep | None = None

    def build_body(self, artifacts: "WorkflowArtifacts") -> dict[str, Any]:
        body: dict[str, Any] = {}
        for item in self.request:
            value = getattr(artifacts, item.source)
            if item.optional and not value:
                continue
            body[item.key] = value
        return body


@dataclass(frozen=True, slots=True)
class ManufacturerProfile:
    manufacturer: Manufacturer
    label: str
    acquisition: tuple[AcquisitionMode, ...]
    actions: tuple[GenerationAction, ...] = ()
    refine_fields: tuple[RequestField, ...] = ()
    # generic: one call fills every artifact; these steps are review-only
    unified: GenerationAction | None = None
    review_steps: tuple[WorkflowStep, ...] = ()
    enabled: bool = True

    @property
    def generation_steps(self) -> tuple[WorkflowStep, ...]:
        if self.unified is not None:
            return self.review_steps
        return tuple(action.step for action in self.actions if action.step is not None)

    @property
    def visited_steps(self) -> tuple[WorkflowStep, ...]:
        """Every step this manufacturer can display, in workflow order."""

        visited = {WorkflowStep.SELECT_MANUFACTURER, WorkflowStep.UPLOAD_DOC}
        if AcquisitionMode.PDF in self.acquisition:
            visited.update({WorkflowStep.EXTRACTING, WorkflowStep.VIEW_DOC})
        visited.update(self.generation_steps)
        return tuple(step for step in WORKFLOW_STEPS if step in visited)

    def action_for_step(self, step: WorkflowStep) -> GenerationAction | None:
        for action in self.actions:
            if action.step == step:
                return action
        return None

    def action_named(self, name: str) -> GenerationAction | None:
        for action in self.actions:
            if action.name == name:
                return action
        return None

    def previous_generation_step(self, step: WorkflowStep) -> WorkflowStep | None:
        steps = self.generation_steps
        position = steps.index(step)
        return steps[position - 1] if position > 0 else None


def _req(key: str, source: str, optional: bool = False) -> RequestField:
    return RequestField(key=key, source=source, optional=optional)


def _out(name: str, target: str, required: bool = True) -> ResponseField:
    return ResponseField(name=name, target=target, required=required)


_MILESIGHT = ManufacturerProfile(
    manufacturer=Manufacturer.MILESIGHT,
    label="Milesight",
    acquisition=(AcquisitionMode.PDF,),
    actions=(
        GenerationAction(
            name="composite_spec",
            endpoint="GenerateCompositeSpec",
            request=(_req("documentation", "documentation"),),
            response=(_out("compositeSpec", "composite_spec"),),
            step=WorkflowStep.STEP1_COMPOSITE,
        ),
        GenerationAction(
            name="rules_block",
            endpoint="GenerateRulesBlock",
            request=(
                _req("documentation", "documentation"),
                _req("sensorSpecificPrompt", "sensor_specific_prompt"),
                _req("compositeSpec", "composite_spec"),
            ),
            response=(_out("rulesBlock", "rules_block"),),
            step=WorkflowStep.STEP2_RULES,
        ),
        GenerationAction(
            name="examples",
            endpoint="ExtractExamplesTables",
            request=(_req("documentation", "documentation"),),
            response=(_out("examplesTablesMd", "examples_tables_md"),),
            step=WorkflowStep.STEP3_EXAMPLES,
        ),
        GenerationAction(
            name="reconcile",
            endpoint="ReconcileRulesBlock",
            request=(
                _req("rulesBlock", "rules_block"),
                _req("examplesTablesMd", "examples_tables_md"),
                _req("compositeSpec", "composite_spec"),
            ),
            response=(_out("rulesBlock", "rules_block"),),
            step=WorkflowStep.STEP4_RECONCILE,
        ),
        GenerationAction(
            name="decoder",
            endpoint="GenerateDecoder",
            request=(
                _req("rulesBlock", "rules_block"),
                _req("examplesTablesMd", "examples_tables_md"),
            ),
            response=(_out("decoderCode", "decoder_code"),),
            step=WorkflowStep.STEP5_DECODER,
        ),
        GenerationAction(
            name="repair",
            endpoint="AutoRepairDecoder",
            request=(
                _req("rulesBlock", "rules_block"),
                _req("examplesTablesMd", "examples_tables_md"),
                _req("decoderCode", "decoder_code"),
            ),
            response=(_out("repairedCode", "decoder_code"),),
            step=WorkflowStep.STEP6_REPAIR,
        ),
        GenerationAction(
            name="feedback",
            endpoint="DecoderFeedback",
            request=(
                _req("rulesBlock", "rules_block"),
                _req("examplesTablesMd", "examples_tables_md"),
                _req("decoderCode", "decoder_code"),
            ),
            response=(_out("feedbackMarkdown", "feedback_markdown"),),
            step=WorkflowStep.STEP7_FEEDBACK,
        ),
    ),
    refine_fields=(
        _req("rulesBlock", "rules_block", optional=True),
        _req("examplesMarkdown", "examples_tables_md", optional=True),
        _req("compositeSummary", "composite_spec", optional=True),
    ),
)

_DECENTLAB = ManufacturerProfile(
    manufacturer=Manufacturer.DECENTLAB,
    label="DecentLab",
    acquisition=(AcquisitionMode.PDF,),
    actions=(
        GenerationAction(
            name="rules_block",
            endpoint="decentlab/rules/generate",
            request=(
                _req("documentation", "documentation"),
                _req("sensorPrompt", "sensor_specific_prompt", optional=True),
            ),
            response=(_out("rulesBlock", "rules_block"),),
            step=WorkflowStep.STEP2_RULES,
        ),
        GenerationAction(
            name="examples",
            endpoint="decentlab/examples/extract",
            request=(_req("documentation", "documentation"),),
            response=(_out("examplesMarkdown", "examples_tables_md"),),
            step=WorkflowStep.STEP3_EXAMPLES,
        ),
        GenerationAction(
            name="decoder",
            endpoint="decentlab/decoder/generate",
            request=(
                _req("documentation", "documentation"),
                _req("rulesBlock", "rules_block"),
                _req("examplesMarkdown", "examples_tables_md"),
            ),
            response=(_out("decoderCode", "decoder_code"),),
            step=WorkflowStep.STEP5_DECODER,
        ),
        GenerationAction(
            name="feedback",
            endpoint="decentlab/decoder/feedback",
            request=(
                _req("decoderCode", "decoder_code"),
                _req("rulesBlock", "rules_block"),
            ),
            response=(_out("feedback", "feedback_markdown"),),
            step=WorkflowStep.STEP7_FEEDBACK,
        ),
        GenerationAction(
            name="refine_rules",
            endpoint="decentlab/rules/refine",
            request=(
                _req("documentation", "documentation"),
                _req("sensorPrompt", "sensor_specific_prompt", optional=True),
                _req("currentRulesBlock", "rules_block"),
                _req("userFeedback", "sensor_specific_prompt", optional=True),
            ),
            response=(_out("rulesBlock", "rules_block"),),
        ),
        GenerationAction(
            name="refine_decoder",
            endpoint="decentlab/decoder/refine",
            request=(
                _req("currentCode", "decoder_code"),
                _req("userFeedback", "sensor_specific_prompt", optional=True),
                _req("documentation", "documentation"),
                _req("rulesBlock", "rules_block"),
                _req("examplesMarkdown", "examples_tables_md"),
                _req("decoderFeedback", "feedback_markdown", optional=True),
            ),
            response=(_out("decoderCode", "decoder_code"),),
        ),
    ),
    refine_fields=(
        _req("rulesBlock", "rules_block", optional=True),
        _req("examplesMarkdown", "examples_tables_md", optional=True),
    ),
)

_DRAGINO = ManufacturerProfile(
    manufacturer=Manufacturer.DRAGINO,
    label="Dragino",
    acquisition=(AcquisitionMode.PDF,),
    actions=(
        GenerationAction(
            name="rules_block",
            endpoint="GenerateDraginoRules",
            request=(
                _req("documentation", "documentation"),
                _req("sensorSpecificPrompt", "sensor_specific_prompt", optional=True),
            ),
            response=(_out("rulesBlock", "rules_block"),),
            step=WorkflowStep.STEP2_RULES,
        ),
        GenerationAction(
            name="decoder",
            endpoint="GenerateDraginoDecoder",
            request=(_req("rulesBlock", "rules_block"),),
            response=(_out("decoderCode", "decoder_code"),),
            step=WorkflowStep.STEP5_DECODER,
        ),
    ),
    refine_fields=(_req("rulesBlock", "rules_block", optional=True),),
)

_WATTECO = ManufacturerProfile(
    manufacturer=Manufacturer.WATTECO,
    label="Watteco",
    acquisition=(AcquisitionMode.TEXT,),
    actions=(
        GenerationAction(
            name="device_profile",
            endpoint="GenerateDeviceProfile",
            request=(
                _req("deviceDocumentation", "documentation"),
                _req("extraHints", "sensor_specific_prompt", optional=True),
            ),
            response=(
                _out("profile", "device_profile"),
                _out("deviceName", "device_name", required=False),
                _out("safeClassName", "safe_class_name", required=False),
            ),
            step=WorkflowStep.STEP2_RULES,
        ),
        GenerationAction(
            name="decoder",
            endpoint="GenerateDecoderCode",
            request=(
                _req("deviceProfile", "device_profile"),
                _req("deviceNameOverride", "device_name", optional=True),
                _req("safeClassNameOverride", "safe_class_name", optional=True),
            ),
            response=(
                _out("decoderCode", "decoder_code"),
                _out("deviceName", "device_name", required=False),
                _out("safeClassName", "safe_class_name", required=False),
            ),
            step=WorkflowStep.STEP5_DECODER,
        ),
    ),
    refine_fields=(
        _req("deviceProfile", "device_profile", optional=True),
        _req("deviceName", "device_name", optional=True),
        _req("safeClassName", "safe_class_name", optional=True),
    ),
)

_GENERIC = ManufacturerProfile(
    manufacturer=Manufacturer.GENERIC,
    label="Generic",
    acquisition=(AcquisitionMode.PDF, AcquisitionMode.TEXT),
    unified=GenerationAction(
        name="generate_all",
        endpoint="DecoderGenerator",
        request=(
            _req("documentation", "documentation"),
            _req("deviceName", "device_name", optional=True),
            _req("sensorSpecificPrompt", "sensor_specific_prompt", optional=True),
            _req("manualExamples", "manual_examples", optional=True),
        ),
        response=(
            _out("deviceFormat", "device_format", required=False),
            _out("compositeSpec", "composite_spec", required=False),
            _out("rulesBlock", "rules_block", required=False),
            _out("examplesTablesMarkdown", "examples_tables_md", required=False),
            _out("decoderCode", "decoder_code", required=False),
            _out("decoderFeedback", "feedback_markdown", required=False),
        ),
    ),
    review_steps=(
        WorkflowStep.STEP1_COMPOSITE,
        WorkflowStep.STEP2_RULES,
        WorkflowStep.STEP3_EXAMPLES,
        WorkflowStep.STEP5_DECODER,
        WorkflowStep.STEP7_FEEDBACK,
    ),
    refine_fields=(
        _req("deviceFormat", "device_format", optional=True),
        _req("compositeSpec", "composite_spec", optional=True),
        _req("rulesBlock", "rules_block", optional=True),
        _req("examplesMarkdown", "examples_tables_md", optional=True),
        _req("manualExamples", "manual_examples", optional=True),
        _req("deviceName", "device_name", optional=True),
    ),
)

_ENGINKO = ManufacturerProfile(
    manufacturer=Manufacturer.ENGINKO,
    label="Enginko (Coming Soon)",
    acquisition=(AcquisitionMode.PDF,),
    enabled=False,
)

MANUFACTURER_PROFILES: dict[Manufacturer, ManufacturerProfile] = {
    profile.manufacturer: profile
    for profile in (_MILESIGHT, _DECENTLAB, _DRAGINO, _WATTECO, _GENERIC, _ENGINKO)
}

# which artifact has to be present for a step to be shown as populated
STEP_ARTIFACTS: dict[WorkflowStep, str] = {
    WorkflowStep.STEP1_COMPOSITE: "composite_spec",
    WorkflowStep.STEP2_RULES: "rules_block",
    WorkflowStep.STEP3_EXAMPLES: "examples_tables_md",
    WorkflowStep.STEP4_RECONCILE: "rules_block",
    WorkflowStep.STEP5_DECODER: "decoder_code",
    WorkflowStep.STEP6_REPAIR: "decoder_code",
    WorkflowStep.STEP7_FEEDBACK: "feedback_markdown",
}


def get_profile(manufacturer: Manufacturer | str) -> ManufacturerProfile:
    return MANUFACTURER_PROFILES[Manufacturer(manufacturer)]


@dataclass(slots=True)
class WorkflowArtifacts:
    """Text produced or entered while generating a decoder."""

    documentation: str = ""
    sensor_specific_prompt: str = ""
    composite_spec: str = ""
    rules_block: str = ""
    examples_tables_md: str = ""
    decoder_code: str = ""
    feedback_markdown: str = ""
    refinement_feedback: str = ""
    refinement_notes: str = ""
    device_profile: str = ""
    device_name: str = ""
    safe_class_name: str = ""
    device_format: str = ""
    manual_examples: str = ""

    def clear(self) -> None:
        for item in fields(self):
            setattr(self, item.name, "")

    def to_dict(self) -> dict[str, str]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass(slots=True)
class WorkflowState:
    """Client-side progress through decoder generation.

    ``current_index <= furthest_index <= LAST_STEP_INDEX`` holds after every
    method call.
    """

    manufacturer: Manufacturer | None = None
    current_index: int = 0
    furthest_index: int = 0
    acquisition_mode: AcquisitionMode = AcquisitionMode.PDF
    job_id: str = ""
    poll_count: int = 0
    artifacts: WorkflowArtifacts = field(default_factory=WorkflowArtifacts)

    @property
    def step(self) -> WorkflowStep:
        return WORKFLOW_STEPS[self.current_index]

    @property
    def furthest_step(self) -> WorkflowStep:
        return WORKFLOW_STEPS[self.furthest_index]

    @property
    def profile(self) -> ManufacturerProfile | None:
        return MANUFACTURER_PROFILES[self.manufacturer] if self.manufacturer else None

    def advance_to(self, step: WorkflowStep) -> None:
        """Move to ``step`` as the result of completed work."""

        index = step.position
        if index > self.furthest_index:
            self.furthest_index = index
        self.current_index = index

    def return_to(self, step: WorkflowStep) -> None:
        """Move back to an already reached step without touching progress."""

        index = step.position
        if index > self.furthest_index:
            raise ValueError(f"{step.value} has not been reached yet")
        self.current_index = index

    def navigate_to(self, index: int) -> bool:
        """User navigation; targets beyond the furthest step are ignored."""

        if index < 0 or index > self.furthest_index:
            return False
        self.current_index = index
        return True

    def has_step_data(self, step: WorkflowStep) -> bool:
        attribute = STEP_ARTIFACTS.get(step)
        if attribute is None:
            return False
        return bool(getattr(self.artifacts, attribute))

    def reset(self) -> None:
        self.manufacturer = None
        self.current_index = 0
        self.furthest_index = 0
        self.acquisition_mode = AcquisitionMode.PDF
        self.job_id = ""
        self.poll_count = 0
        self.artifacts.clear()


__all__ = [
    "AcquisitionMode",
    "GenerationAction",
    "LAST_STEP_INDEX",
    "MANUFACTURER_PROFILES",
    "Manufacturer",
    "ManufacturerProfile",
    "RequestField",
    "ResponseField",
    "STEP_ARTIFACTS",
    "STEP_TITLES",
    "WORKFLOW_STEPS",
    "WorkflowArtifacts",
    "WorkflowState",
    "WorkflowStep",
    "get_profile",
]
