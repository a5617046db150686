"""Video generation pipeline modules."""
from .assets import get_random_gameplay_clip, list_backgrounds, probe_video_duration, resolve_background
from .orchestrator import PipelineOrchestrator
from .renderer import RenderAssets, RenderInvoker, RenderProps
from .result import StageResult
from .script_transformer import OllamaClient, synthesize_script, template_script
from .thread_fetcher import RawThread, RedditThreadClient, fetch_thread, is_valid_thread_url
from .timeline import CompositionPlan, build_composition, plan_background
from .tts_generator import default_voice_client, synthesize_audio

__all__ = [
    "get_random_gameplay_clip",
    "list_backgrounds",
    "probe_video_duration",
    "resolve_background",
    "PipelineOrchestrator",
    "RenderAssets",
    "RenderInvoker",
    "RenderProps",
    "StageResult",
    "OllamaClient",
    "synthesize_script",
    "template_script",
    "RawThread",
    "RedditThreadClient",
    "fetch_thread",
    "is_valid_thread_url",
    "CompositionPlan",
    "build_composition",
    "plan_background",
    "default_voice_client",
    "synthesize_audio",
]
