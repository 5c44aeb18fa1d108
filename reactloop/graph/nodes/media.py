"""Media-generation node: creates or edits images and saves them to the media store."""

import logging
import re
from dataclasses import dataclass
from typing import Any

from reactloop.errors import RunCancelledError
from reactloop.graph.context import HistoryEntry, RunContext, StepKind, new_history_id
from reactloop.graph.edge import Outcome
from reactloop.graph.node import NodeKind, RetryingNode
from reactloop.llm.provider import LLMProvider
from reactloop.media.provider import MediaAsset, MediaProvider
from reactloop.schemas.decision import MediaConfig
from reactloop.storage.media_store import MediaStore

logger = logging.getLogger(__name__)

IMAGE_KEYWORDS = (
    "generate image",
    "create image",
    "draw",
    "illustrate",
    "diagram",
    "chart",
    "visualization",
    "picture",
    "graphic",
)
_TRIGGER_PHRASE = re.compile(
    r"(?:generate|create|draw|make|show me)?\s*(?:an?|the)?\s*"
    r"(?:image|picture|diagram|chart|visualization|graphic)\s*"
    r"(?:of|showing|that shows|about)?\s*",
    re.IGNORECASE,
)

ENHANCEMENT_PROMPT = """You are an expert at writing image generation prompts. Enhance the given prompt to produce the highest quality image possible.

Transform this basic prompt into a detailed, high-quality image generation prompt:
"{prompt}"

Guidelines for enhancement:
- Add specific visual quality keywords: high resolution, sharp focus, cinematic lighting
- Include artistic style directions and composition
- Add atmospheric and lighting details
- Keep the core subject and intent unchanged
- Make it vivid and descriptive but concise

Respond with ONLY the enhanced prompt, no explanations or quotes."""

EDITING_PROMPT = """You are an expert at writing image editing prompts.

Transform these editing instructions into a clear, specific editing prompt:
"{prompt}"

Guidelines for enhancement:
- Be explicit about what should change and what should stay the same
- Include quality improvement keywords: enhanced details, improved clarity
- Keep the user's intent unchanged

Respond with ONLY the enhanced editing prompt, no explanations or quotes."""

# (pattern, template) pairs tried in order; the last entry always matches
STYLE_RULES: list[tuple[re.Pattern, str]] = [
    (
        re.compile(r"diagram|chart|graph|flowchart|technical|schematic|blueprint", re.I),
        "Clean, professional {prompt}, technical illustration style, precise lines, "
        "clear labeling, informative design, high contrast, vector art quality",
    ),
    (
        re.compile(r"fantasy|magical|dragon|wizard|castle|mystical|ethereal|mythical", re.I),
        "Epic, highly detailed {prompt}, fantasy concept art, dramatic lighting, "
        "rich atmospheric effects, masterpiece quality, digital painting style",
    ),
    (
        re.compile(r"sunset|sunrise|landscape|mountain|forest|ocean|nature|scenery|sky", re.I),
        "Stunning, photorealistic {prompt}, dramatic lighting and composition, rich vibrant "
        "colors, sharp focus, high resolution, cinematic quality, award-winning photography",
    ),
    (
        re.compile(r"abstract|artistic|creative|modern|contemporary|design|pattern", re.I),
        "Striking, creative {prompt}, modern artistic style, bold composition, "
        "sophisticated color palette, gallery-worthy quality, innovative visual design",
    ),
    (
        re.compile(r"person|character|portrait|face|people|human|figure", re.I),
        "Compelling {prompt}, expressive character design, detailed features, "
        "dramatic lighting, emotional depth, professional illustration quality",
    ),
    (
        re.compile(r"building|architecture|city|urban|street|interior|room|house", re.I),
        "Impressive {prompt}, architectural visualization, sophisticated design, "
        "excellent composition, professional rendering quality, detailed environment",
    ),
    (
        re.compile(r".*", re.S),
        "High-quality, photorealistic {prompt}, professional composition, rich detail, "
        "sharp focus, vibrant colors, cinematic lighting, award-winning quality",
    ),
]


def extract_image_prompt(goal: str) -> str:
    """Strip "generate an image of ..." style trigger words from a goal."""
    if not any(keyword in goal.lower() for keyword in IMAGE_KEYWORDS):
        return goal
    return _TRIGGER_PHRASE.sub("", goal).strip() or goal


def rule_based_enhancement(prompt: str) -> str:
    for pattern, template in STYLE_RULES:
        if pattern.search(prompt):
            return template.format(prompt=prompt)
    return prompt


def simplify_prompt(prompt: str) -> str:
    """Drop intensifiers and keep the first clause, at most 100 chars."""
    simplified = re.sub(r"\b(very|extremely|highly|incredibly|amazingly)\s+", "", prompt, flags=re.I)
    simplified = re.sub(r"\b(detailed|intricate|complex|sophisticated)\s+", "", simplified, flags=re.I)
    return re.split(r"[.,!?]", simplified)[0].strip()[:100]


@dataclass
class MediaInput:
    step: int
    prompt: str
    original_prompt: str
    config: MediaConfig
    source: MediaAsset | None = None

    @property
    def operation_name(self) -> str:
        return "edit_images" if self.source is not None else "generate_images"


class MediaGenerationNode(RetryingNode):
    """
    Generates images for the staged prompt and records where they were saved.

    Producing no images is not an error: the node returns no outcome and
    the run ends, since an empty result usually means content filtering.
    """

    kind = NodeKind.GENERATE_MEDIA

    def __init__(
        self,
        media: MediaProvider,
        store: MediaStore,
        llm: LLMProvider | None = None,
        model: str | None = None,
        enhance_prompts: bool = True,
        max_retries: int = 3,
        wait_seconds: float = 2.0,
        **kwargs: Any,
    ):
        kwargs.setdefault("fallback", self.media_fallback)
        super().__init__(max_retries=max_retries, wait_seconds=wait_seconds, **kwargs)
        self.media = media
        self.store = store
        self.llm = llm
        self.model = model
        self.enhance_prompts = enhance_prompts

    async def prepare(self, ctx: RunContext) -> MediaInput:
        config: MediaConfig = ctx.pending.media_config or MediaConfig()
        base_prompt = ctx.pending.media_prompt or extract_image_prompt(ctx.goal)

        source = None
        if config.source_image:
            try:
                source = self.store.load(config.source_image)
                logger.info(f"🖼️ Editing source image: {config.source_image}")
            except (FileNotFoundError, ValueError) as e:
                logger.warning(f"⚠️ Could not load source image, generating instead: {e}")

        prompt = await self._enhance(base_prompt, editing=source is not None)
        self.check_cancelled()
        step = ctx.step_index or 1
        operation = "edit_images" if source is not None else "generate_images"
        logger.info(f"🎨 {operation} - Step {step}: {prompt[:100]}")

        ctx.progress.emit_action_start(
            step,
            kind="media_generation",
            provider_name="gemini",
            operation_name=operation,
            run_id=ctx.run_id,
            prompt=prompt[:100],
        )
        return MediaInput(
            step=step,
            prompt=prompt,
            original_prompt=base_prompt,
            config=config,
            source=source,
        )

    async def _enhance(self, prompt: str, editing: bool) -> str:
        if not self.enhance_prompts:
            return prompt
        if self.llm is not None:
            template = EDITING_PROMPT if editing else ENHANCEMENT_PROMPT
            try:
                enhanced = await self.cancellable(
                    self.llm.complete(template.format(prompt=prompt), model=self.model),
                    label="Prompt enhancement",
                )
                if enhanced and enhanced.strip():
                    return enhanced.strip().strip('"')
            except RunCancelledError:
                raise
            except Exception as e:
                logger.warning(f"⚠️ Prompt enhancement failed, using rules: {e}")
        return prompt if editing else rule_based_enhancement(prompt)

    async def execute(self, prepared: MediaInput) -> list[MediaAsset]:
        assets = await self.cancellable(
            self.media.generate_images(prepared.prompt, prepared.config, source=prepared.source)
        )
        logger.info(f"✅ Generated {len(assets)} image(s)")
        return assets

    async def media_fallback(self, prepared: MediaInput, error: BaseException) -> list[MediaAsset]:
        simplified = simplify_prompt(prepared.original_prompt)
        logger.info(f"🔄 Retrying image generation with simplified prompt: {simplified}")
        try:
            return await self.cancellable(
                self.media.generate_images(simplified, prepared.config, source=prepared.source)
            )
        except RunCancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Simplified image generation failed: {e}")
            return []

    async def finalize(
        self, ctx: RunContext, prepared: MediaInput, result: list[MediaAsset]
    ) -> Outcome | None:
        refs: list[str] = []
        filtered = 0
        for index, asset in enumerate(result or []):
            filtered += asset.safety_filtered
            try:
                refs.append(self.store.save(asset, index))
            except OSError as e:
                logger.error(f"❌ Failed to save image {index + 1}: {e}")

        success = len(refs) > 0
        if success:
            summary = f"Generated {len(refs)} image(s): " + ", ".join(refs)
        else:
            summary = "Error: No images were generated"
            if filtered:
                summary += f" ({filtered} filtered for safety)"

        entry = ctx.history.append(
            HistoryEntry(
                step_index=prepared.step,
                step_kind=StepKind.TOOL_ACTION,
                provider_name="gemini",
                operation_name=prepared.operation_name,
                parameters={
                    "prompt": prepared.prompt,
                    "aspectRatio": prepared.config.aspect_ratio,
                    "numberOfImages": prepared.config.number_of_images,
                    "assetPaths": refs,
                },
                result_text=summary,
                justification=f"Image request: {prepared.original_prompt}",
                success=success,
                history_id=new_history_id("image", prepared.step),
            )
        )
        ctx.media_asset_refs.extend(refs)
        ctx.pending.media_prompt = None
        ctx.pending.media_config = None

        ctx.progress.emit_action_complete(
            prepared.step,
            kind="media_generation",
            history_id=entry.history_id,
            success=success,
            run_id=ctx.run_id,
            asset_paths=refs,
        )

        if not success:
            logger.warning("⚠️ No images generated, ending run")
            return None
        return Outcome.DEFAULT
