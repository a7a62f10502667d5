"""Render pipeline orchestration for SceneCast."""

from scenecast.pipelines.render_pipeline import RenderOrchestrator, build_orchestrator, normalize_scenes

__all__ = ["RenderOrchestrator", "build_orchestrator", "normalize_scenes"]
